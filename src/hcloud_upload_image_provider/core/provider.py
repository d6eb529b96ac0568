"""
Host control plane boundary for the `UploadedImage` resource.

The host speaks property bags (camelCase keys, see `state_codec`). This
module decodes them, calls the lifecycle controller / diff planner /
cleanup invoker, and encodes the results back. Clients are built per call
from the credential through factories, so tests inject fakes and the CLI
injects the real HTTP client and upload tool.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .cancellation import CancelToken
from .cleanup import cleanup as run_cleanup
from .config import AppConfig
from .diff_engine import plan_diff
from .hcloud_client import HcloudClient
from .lifecycle import ClientFactory, LifecycleController, RemoteApi, UploaderFactory
from .state_codec import redact_secrets, spec_from_inputs, spec_to_inputs, state_from_dict, state_to_dict
from .uploader import CliUploader, Uploader

Props = Dict[str, Any]


class UploadedImageProvider:
    """Uploads a custom disk image to Hetzner Cloud as a snapshot."""

    def __init__(
        self,
        client_factory: ClientFactory,
        uploader_factory: UploaderFactory,
        *,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self._client_factory = client_factory
        self._uploader_factory = uploader_factory
        self.log = logger or logging.getLogger("huip.provider")
        self.controller = LifecycleController(client_factory, uploader_factory, logger=logger)

    @classmethod
    def from_config(cls, cfg: AppConfig, *, logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None) -> "UploadedImageProvider":
        def client_factory(token: str) -> HcloudClient:
            return HcloudClient(
                token,
                endpoint=cfg.hcloud.endpoint,
                timeout_sec=cfg.hcloud.timeout_sec,
                retries=cfg.hcloud.retries,
                backoff_base_sec=cfg.hcloud.backoff_base_sec,
            )

        def uploader_factory(token: str, client: Any) -> Uploader:
            return CliUploader(token, client, binary=cfg.uploader.binary)

        return cls(client_factory, uploader_factory, logger=logger)

    # ----- resource operations -----

    def create(
        self,
        name: str,
        inputs: Mapping[str, Any],
        *,
        dry_run: bool = False,
        cancel: Optional[CancelToken] = None,
    ) -> Tuple[str, Props]:
        self.log.debug("create %s inputs=%s", name, redact_secrets(inputs))
        spec = spec_from_inputs(inputs)
        image_id, state = self.controller.create(name, spec, dry_run=dry_run, cancel=cancel)
        return image_id, state_to_dict(state)

    def read(
        self,
        image_id: str,
        inputs: Mapping[str, Any],
        state: Mapping[str, Any],
        *,
        cancel: Optional[CancelToken] = None,
    ) -> Optional[Tuple[str, Props, Props]]:
        """Returns None when the image was deleted out of band."""
        self.log.debug("read %s state=%s", image_id, redact_secrets(state))
        spec = spec_from_inputs(inputs)
        refreshed = self.controller.read(image_id, spec, state_from_dict(state), cancel=cancel)
        if refreshed is None:
            return None
        return image_id, spec_to_inputs(spec), state_to_dict(refreshed)

    def update(
        self,
        image_id: str,
        inputs: Mapping[str, Any],
        state: Mapping[str, Any],
        *,
        cancel: Optional[CancelToken] = None,
    ) -> Props:
        self.log.debug("update %s inputs=%s", image_id, redact_secrets(inputs))
        spec = spec_from_inputs(inputs)
        updated = self.controller.update(image_id, spec, state_from_dict(state), cancel=cancel)
        return state_to_dict(updated)

    def delete(
        self,
        image_id: str,
        state: Mapping[str, Any],
        *,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        self.controller.delete(image_id, state_from_dict(state), cancel=cancel)

    def diff(self, inputs: Mapping[str, Any], state: Mapping[str, Any]) -> Props:
        return plan_diff(spec_from_inputs(inputs), state_from_dict(state)).to_dict()

    # ----- functions -----

    def cleanup(self, args: Mapping[str, Any], *, cancel: Optional[CancelToken] = None) -> Props:
        """Reclaim temporary servers/SSH keys left over from failed uploads."""
        token = str(args.get("hcloudToken") or "")
        clients: List[RemoteApi] = []

        def factory(credential: str) -> Uploader:
            client = self._client_factory(credential)
            clients.append(client)
            return self._uploader_factory(credential, client)

        try:
            outcome = run_cleanup(token, factory, cancel=cancel)
        finally:
            for client in clients:
                client.close()
        return {"message": outcome.message}
