"""
Upload collaborator.

`Uploader` is the contract the lifecycle relies on: one long-running
`upload()` returning the finished snapshot, and `cleanup_temp_resources()`
for leftovers of interrupted uploads. No retry happens here or above.

`CliUploader` drives the `hcloud-upload-image` command-line tool:
  - the token is passed through the HCLOUD_TOKEN environment variable
  - every upload is tagged with a unique marker label so the resulting
    snapshot can be found afterwards through the API
  - the subprocess is polled and terminated when the CancelToken fires
"""

from __future__ import annotations

import logging
import os
import subprocess
import uuid
from typing import Callable, Dict, List, Optional, Protocol

from .cancellation import CancelToken, never
from .hcloud_client import HcloudClient
from .models import Compression, ImageDescriptor, ImageFormat, UploadOptions

UPLOAD_MARKER_LABEL = "hcloud-upload-image-provider/upload-id"

log = logging.getLogger("huip.uploader")


class UploaderError(Exception):
    """Raised when the upload tool fails or produces no snapshot."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.returncode is not None:
            base += f" (rc={self.returncode})"
        if self.stderr:
            base += f"\n{self.stderr.strip()[-400:]}"
        return base


class Uploader(Protocol):
    def upload(self, options: UploadOptions, cancel: CancelToken) -> ImageDescriptor:
        ...

    def cleanup_temp_resources(self, cancel: CancelToken) -> Optional[str]:
        ...


Runner = Callable[[List[str], Dict[str, str], CancelToken], "subprocess.CompletedProcess[str]"]


def run_subprocess(argv: List[str], env: Dict[str, str], cancel: CancelToken) -> "subprocess.CompletedProcess[str]":
    """Run `argv`, terminating the process as soon as `cancel` fires."""
    proc = subprocess.Popen(argv, text=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=env)
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=0.5)
            return subprocess.CompletedProcess(argv, proc.returncode, stdout, stderr)
        except subprocess.TimeoutExpired:
            if not cancel.cancelled:
                continue
        log.warning("cancelling %s (pid=%s)", argv[:2], proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        cancel.raise_if_cancelled("upload")


class CliUploader:
    """Uploader backed by the `hcloud-upload-image` binary."""

    def __init__(
        self,
        token: str,
        client: HcloudClient,
        *,
        binary: str = "hcloud-upload-image",
        runner: Runner = run_subprocess,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.token = token
        self.client = client
        self.binary = binary
        self.runner = runner
        self.extra_env = dict(extra_env or {})

    # ------------------------- Uploader -------------------------

    def upload(self, options: UploadOptions, cancel: Optional[CancelToken] = None) -> ImageDescriptor:
        cancel = cancel or never()
        marker = uuid.uuid4().hex
        argv = self.build_upload_argv(options, marker)
        log.info("uploading %s (arch=%s)", options.source_url, options.architecture.value)
        self._run(argv, cancel)

        images = self.client.list_images(
            label_selector=f"{UPLOAD_MARKER_LABEL}={marker}",
            image_type="snapshot",
            cancel=cancel,
        )
        if not images:
            raise UploaderError(f"upload finished but no snapshot carries marker {marker}")
        image = max(images, key=lambda i: i.id)
        log.info("upload produced image %s", image.id)
        return image

    def cleanup_temp_resources(self, cancel: Optional[CancelToken] = None) -> Optional[str]:
        cp = self._run([self.binary, "cleanup"], cancel or never())
        out = (cp.stdout or "").strip()
        return out.splitlines()[-1] if out else None

    # ------------------------- helpers -------------------------

    def build_upload_argv(self, options: UploadOptions, marker: str) -> List[str]:
        argv = [
            self.binary,
            "upload",
            "--image-url", options.source_url,
            "--architecture", options.architecture.value,
        ]
        if options.compression is not Compression.NONE:
            argv += ["--compression", options.compression.value]
        if options.format is not ImageFormat.RAW:
            argv += ["--format", options.format.value]
        if options.expected_size_bytes is not None:
            argv += ["--image-size", str(options.expected_size_bytes)]
        if options.server_type is not None:
            argv += ["--server-type", options.server_type.name]
        if options.description is not None:
            argv += ["--description", options.description]
        labels = dict(options.labels)
        labels[UPLOAD_MARKER_LABEL] = marker
        argv += ["--labels", ",".join(f"{k}={v}" for k, v in sorted(labels.items()))]
        return argv

    def _run(self, argv: List[str], cancel: CancelToken) -> "subprocess.CompletedProcess[str]":
        cancel.raise_if_cancelled(argv[1] if len(argv) > 1 else "upload")
        env = dict(os.environ)
        env.update(self.extra_env)
        env["HCLOUD_TOKEN"] = self.token
        try:
            cp = self.runner(argv, env, cancel)
        except FileNotFoundError as e:
            raise UploaderError(f"upload tool not found: {self.binary}") from e
        if cp.returncode != 0:
            raise UploaderError(f"{self.binary} {argv[1]} failed", returncode=cp.returncode, stderr=cp.stderr or "")
        return cp
