"""
State codec: spec <-> state mapping and the persisted property-bag format.

The host control plane stores state as a flat mapping with camelCase keys
(spec keys plus remote-assigned keys). Everything here is pure and performs
no validation; the lifecycle controller validates before calling in.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Mapping, Optional

from .models import (
    DEFAULT_COMPRESSION,
    DEFAULT_FORMAT,
    DesiredSpec,
    ImageDescriptor,
    ObservedState,
    RemoteAttributes,
)

# spec field -> wire key
SPEC_KEYS: Dict[str, str] = {
    "credential": "hcloudToken",
    "source_url": "imageUrl",
    "compression": "imageCompression",
    "format": "imageFormat",
    "expected_size_bytes": "imageSize",
    "architecture": "architecture",
    "server_type_override": "serverType",
    "description": "description",
    "labels": "labels",
}

# remote attribute -> wire key
REMOTE_KEYS: Dict[str, str] = {
    "image_id": "imageId",
    "image_name": "imageName",
    "created": "created",
    "disk_size": "diskSize",
    "os_flavor": "osFlavor",
    "os_version": "osVersion",
    "status": "status",
    "image_type": "type",
}

SECRET_KEYS = frozenset({"hcloudToken"})
REDACTED = "***REDACTED***"


# ---------- spec <-> state ----------

def to_state(spec: DesiredSpec) -> ObservedState:
    """Wrap a spec into a state with zero-valued remote attributes."""
    return ObservedState(spec=spec, remote=RemoteAttributes())


def remote_from_descriptor(descriptor: ImageDescriptor) -> RemoteAttributes:
    return RemoteAttributes(
        image_id=int(descriptor.id),
        image_name=descriptor.name or "",
        created=descriptor.created or "",
        disk_size=int(descriptor.disk_size or 0),
        os_flavor=descriptor.os_flavor or "",
        os_version=descriptor.os_version or "",
        status=descriptor.status or "",
        image_type=descriptor.type or "",
    )


def overlay(
    descriptor: ImageDescriptor,
    prior: ObservedState,
    spec: Optional[DesiredSpec] = None,
) -> ObservedState:
    """Remote attributes come from `descriptor`; the spec part is kept from
    `prior` unless a new `spec` is supplied, in which case it wins in full."""
    return replace(
        prior,
        spec=spec if spec is not None else prior.spec,
        remote=remote_from_descriptor(descriptor),
    )


# ---------- property bags ----------

def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    return str(v)


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    return int(v)


def _labels(v: Any) -> Optional[Dict[str, str]]:
    if v is None:
        return None
    return {str(k): str(val) for k, val in dict(v).items()}


def spec_from_inputs(inputs: Mapping[str, Any], *, apply_defaults: bool = True) -> DesiredSpec:
    """Decode user inputs. Compression and format default to none/raw."""
    compression = _opt_str(inputs.get("imageCompression"))
    fmt = _opt_str(inputs.get("imageFormat"))
    if apply_defaults:
        compression = DEFAULT_COMPRESSION if compression is None else compression
        fmt = DEFAULT_FORMAT if fmt is None else fmt
    return DesiredSpec(
        credential=str(inputs.get("hcloudToken") or ""),
        source_url=_opt_str(inputs.get("imageUrl")),
        compression=compression,
        format=fmt,
        expected_size_bytes=_opt_int(inputs.get("imageSize")),
        architecture=str(inputs.get("architecture") or ""),
        server_type_override=_opt_str(inputs.get("serverType")),
        description=_opt_str(inputs.get("description")),
        labels=_labels(inputs.get("labels")),
    )


def spec_to_inputs(spec: DesiredSpec) -> Dict[str, Any]:
    """Encode a spec; absent optional fields are omitted."""
    out: Dict[str, Any] = {}
    for attr, key in SPEC_KEYS.items():
        value = getattr(spec, attr)
        if value is None:
            continue
        out[key] = dict(value) if attr == "labels" else value
    return out


def state_to_dict(state: ObservedState) -> Dict[str, Any]:
    out = spec_to_inputs(state.spec)
    for attr, key in REMOTE_KEYS.items():
        out[key] = getattr(state.remote, attr)
    return out


def redact_secrets(bag: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a property bag safe to log: secret values are masked."""
    return {k: (REDACTED if k in SECRET_KEYS and v else v) for k, v in bag.items()}


def state_from_dict(data: Mapping[str, Any]) -> ObservedState:
    """Decode a stored state. Defaults are not re-applied: what was stored wins."""
    spec = spec_from_inputs(data, apply_defaults=False)
    remote = RemoteAttributes(
        image_id=int(data.get("imageId") or 0),
        image_name=str(data.get("imageName") or ""),
        created=str(data.get("created") or ""),
        disk_size=int(data.get("diskSize") or 0),
        os_flavor=str(data.get("osFlavor") or ""),
        os_version=str(data.get("osVersion") or ""),
        status=str(data.get("status") or ""),
        image_type=str(data.get("type") or ""),
    )
    return ObservedState(spec=spec, remote=remote)
