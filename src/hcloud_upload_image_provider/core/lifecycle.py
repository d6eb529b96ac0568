"""
Lifecycle controller for the uploaded-image resource.

Create / Read / Update / Delete against the Hetzner Cloud API and the upload
collaborator. Each call is a pure function of its arguments plus the calls
it makes: clients are built per call from the credential through injected
factories, nothing is cached between calls and no remote call is retried.

Validation always happens before the first remote call, and dry-run Create
returns before any client is built.
"""

from __future__ import annotations

import logging
import re
from contextlib import closing
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Type, TypeVar, Union
from urllib.parse import urlparse

from .cancellation import CancelToken, never
from .errors import (
    InvalidIdentityError,
    NotFoundError,
    ProviderError,
    RemoteError,
    UnsupportedValueError,
    UploadError,
    ValidationError,
)
from .hcloud_client import HcloudApiError
from .models import (
    Architecture,
    Compression,
    DesiredSpec,
    ImageDescriptor,
    ImageFormat,
    ObservedState,
    ServerType,
    UploadOptions,
)
from .state_codec import overlay, to_state
from .uploader import Uploader

log = logging.getLogger("huip.lifecycle")

_INT64_MIN, _INT64_MAX = -(2 ** 63), 2 ** 63 - 1
_ID_RE = re.compile(r"^[+-]?[0-9]+$")

E = TypeVar("E", Compression, ImageFormat, Architecture)


class RemoteApi(Protocol):
    def get_server_type_by_name(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[ServerType]:
        ...

    def get_image_by_id(self, image_id: int, cancel: Optional[CancelToken] = None) -> Optional[ImageDescriptor]:
        ...

    def update_image(
        self,
        image_id: int,
        *,
        description: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ImageDescriptor:
        ...

    def delete_image(self, image_id: int, cancel: Optional[CancelToken] = None) -> None:
        ...

    def close(self) -> None:
        ...


ClientFactory = Callable[[str], RemoteApi]
UploaderFactory = Callable[[str, Any], Uploader]


# ---------- validation helpers ----------

def parse_identity(image_id: str) -> int:
    """Parse the external id as a base-10 int64."""
    text = image_id if isinstance(image_id, str) else ""
    if not _ID_RE.fullmatch(text):
        raise InvalidIdentityError(f"invalid image ID: {image_id!r}")
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise InvalidIdentityError(f"invalid image ID: {image_id!r} (out of range)")
    return value


def require_credential(credential: Optional[str]) -> None:
    if not credential:
        raise ValidationError("credential required")


def resolve_enum(enum_cls: Type[E], field: str, value: Optional[str], default: Optional[E] = None) -> E:
    """Map a user string onto `enum_cls`; empty/None falls back to `default`."""
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} required")
        return default
    try:
        return enum_cls(value)
    except ValueError:
        raise UnsupportedValueError(field, value) from None


def _check_source_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"invalid source URL: {url!r}")


# ---------- controller ----------

class LifecycleController:
    def __init__(
        self,
        client_factory: ClientFactory,
        uploader_factory: UploaderFactory,
        *,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self._client_factory = client_factory
        self._uploader_factory = uploader_factory
        self.log = logger or log

    # ----- Create -----

    def create(
        self,
        name: str,
        spec: DesiredSpec,
        *,
        dry_run: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> Tuple[str, ObservedState]:
        cancel = cancel or never()
        require_credential(spec.credential)
        if not spec.source_url:
            raise ValidationError("source required")
        if not spec.architecture:
            raise ValidationError("architecture required")

        state = to_state(spec)
        if dry_run:
            self.log.info("create %s: dry-run, no remote calls", name)
            return name, state

        _check_source_url(spec.source_url)
        compression = resolve_enum(Compression, "imageCompression", spec.compression, Compression.NONE)
        fmt = resolve_enum(ImageFormat, "imageFormat", spec.format, ImageFormat.RAW)
        arch = resolve_enum(Architecture, "architecture", spec.architecture)

        with closing(self._client_factory(spec.credential)) as client:
            server_type = None
            if spec.server_type_override is not None:
                server_type = self._resolve_server_type(client, spec.server_type_override, cancel)

            options = UploadOptions(
                source_url=spec.source_url,
                architecture=arch,
                compression=compression,
                format=fmt,
                expected_size_bytes=spec.expected_size_bytes,
                server_type=server_type,
                description=spec.description,
                labels=dict(spec.labels or {}),
            )

            uploader = self._uploader_factory(spec.credential, client)
            cancel.raise_if_cancelled("upload")
            self.log.info("create %s: uploading %s", name, spec.source_url)
            try:
                descriptor = uploader.upload(options, cancel)
            except ProviderError:
                raise
            except Exception as e:
                raise UploadError("failed to upload image", cause=e) from e

        self.log.info("create %s: image %s ready (status=%s)", name, descriptor.id, descriptor.status)
        return str(descriptor.id), overlay(descriptor, state)

    def _resolve_server_type(self, client: RemoteApi, name: str, cancel: CancelToken) -> ServerType:
        cancel.raise_if_cancelled("server type lookup")
        try:
            server_type = client.get_server_type_by_name(name, cancel=cancel)
        except HcloudApiError as e:
            raise RemoteError("failed to get server type", cause=e) from e
        if server_type is None:
            raise NotFoundError(f"server type not found: {name}")
        return server_type

    # ----- Read -----

    def read(
        self,
        image_id: str,
        spec: DesiredSpec,
        last_state: ObservedState,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[ObservedState]:
        """Refresh state; None means the image no longer exists."""
        cancel = cancel or never()
        ident = parse_identity(image_id)
        require_credential(spec.credential)

        with closing(self._client_factory(spec.credential)) as client:
            cancel.raise_if_cancelled("read")
            try:
                descriptor = client.get_image_by_id(ident, cancel=cancel)
            except HcloudApiError as e:
                raise RemoteError("failed to get image", cause=e) from e

        if descriptor is None:
            self.log.info("read %s: image is gone", ident)
            return None
        return overlay(descriptor, last_state)

    # ----- Update -----

    def update(
        self,
        image_id: str,
        spec: DesiredSpec,
        current_state: ObservedState,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> ObservedState:
        """Apply description/labels in place. Source and architecture changes
        are rejected: those go through replacement, never through update."""
        cancel = cancel or never()
        ident = parse_identity(image_id)
        require_credential(spec.credential)
        if spec.source_url != current_state.spec.source_url:
            raise ValidationError("imageUrl cannot be updated in place; the image requires replacement")
        if spec.architecture != current_state.spec.architecture:
            raise ValidationError("architecture cannot be updated in place; the image requires replacement")

        with closing(self._client_factory(spec.credential)) as client:
            cancel.raise_if_cancelled("update")
            try:
                descriptor = client.update_image(
                    ident,
                    description=spec.description,
                    labels=spec.labels,
                    cancel=cancel,
                )
            except HcloudApiError as e:
                if e.is_not_found:
                    raise NotFoundError(f"image {ident} not found", cause=e) from e
                raise RemoteError("failed to update image", cause=e) from e

        self.log.info("update %s: description/labels applied", ident)
        return overlay(descriptor, current_state, spec=spec)

    # ----- Delete -----

    def delete(
        self,
        image_id: str,
        state: ObservedState,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        """Delete with the stored credential; a missing image counts as deleted."""
        cancel = cancel or never()
        ident = parse_identity(image_id)
        require_credential(state.spec.credential)

        with closing(self._client_factory(state.spec.credential)) as client:
            cancel.raise_if_cancelled("delete")
            try:
                client.delete_image(ident, cancel=cancel)
            except HcloudApiError as e:
                if e.is_not_found:
                    self.log.info("delete %s: already gone", ident)
                    return
                raise RemoteError("failed to delete image", cause=e) from e
        self.log.info("delete %s: done", ident)
