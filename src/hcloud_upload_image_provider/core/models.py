"""
Typed records for the uploaded-image resource.

- DesiredSpec: what the user declared (immutable, supplied on every call).
- RemoteAttributes: read-only attributes assigned by Hetzner Cloud.
- ObservedState: composition of the spec in effect at last write plus the
  remote attributes. Never built by inheritance; see `state_codec`.
- ImageDescriptor / ServerType: what the API and the uploader hand back.
- UploadOptions: fully resolved bundle passed to the uploader.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional


class Compression(str, enum.Enum):
    NONE = "none"
    BZ2 = "bz2"
    XZ = "xz"


class ImageFormat(str, enum.Enum):
    RAW = "raw"
    QCOW2 = "qcow2"


class Architecture(str, enum.Enum):
    X86 = "x86"
    ARM = "arm"


DEFAULT_COMPRESSION = Compression.NONE.value
DEFAULT_FORMAT = ImageFormat.RAW.value


@dataclass(frozen=True)
class DesiredSpec:
    credential: str
    architecture: str
    source_url: Optional[str] = None
    compression: Optional[str] = None
    format: Optional[str] = None
    expected_size_bytes: Optional[int] = None
    server_type_override: Optional[str] = None
    description: Optional[str] = None
    labels: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class RemoteAttributes:
    image_id: int = 0
    image_name: str = ""
    created: str = ""
    disk_size: int = 0
    os_flavor: str = ""
    os_version: str = ""
    status: str = ""
    image_type: str = ""


@dataclass(frozen=True)
class ObservedState:
    spec: DesiredSpec
    remote: RemoteAttributes = field(default_factory=RemoteAttributes)


@dataclass(frozen=True)
class ImageDescriptor:
    id: int
    name: str = ""
    created: str = ""
    disk_size: float = 0.0
    os_flavor: str = ""
    os_version: str = ""
    status: str = ""
    type: str = ""
    description: Optional[str] = None
    architecture: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ServerType:
    id: int
    name: str
    architecture: Optional[str] = None


@dataclass(frozen=True)
class UploadOptions:
    source_url: str
    architecture: Architecture
    compression: Compression = Compression.NONE
    format: ImageFormat = ImageFormat.RAW
    expected_size_bytes: Optional[int] = None
    server_type: Optional[ServerType] = None
    description: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CleanupOutcome:
    message: str
