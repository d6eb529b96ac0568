"""
Hetzner Cloud HTTP client.

- requests.Session with bearer auth and JSON bodies.
- Retries with exponential backoff on connection errors and 5xx only.
- No retry on 4xx. A 404 surfaces as HcloudApiError(code="not_found").
- Timeouts are clamped to the caller's CancelToken deadline.
- Typed helpers for the four calls the lifecycle needs plus a label-based
  image search used by the uploader.

Usage:
    client = HcloudClient(token, endpoint="https://api.hetzner.cloud/v1")
    image = client.get_image_by_id(12345)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .cancellation import CancelToken, never
from .models import ImageDescriptor, ServerType

DEFAULT_ENDPOINT = "https://api.hetzner.cloud/v1"

_LOG_PREVIEW = 300
# urllib3 rejects a zero timeout
_MIN_TIMEOUT = 0.001


@dataclass
class HcloudApiError(Exception):
    """HTTP/transport error with API context."""
    status: int
    url: str
    code: str = ""
    message: str = ""
    body: str = ""

    @property
    def is_not_found(self) -> bool:
        return self.status == 404 or self.code == "not_found"

    def __str__(self) -> str:
        base = f"HcloudApiError(status={self.status}, url={self.url})"
        if self.code:
            base += f" code={self.code}"
        if self.message:
            base += f": {self.message}"
        return base


def descriptor_from_json(data: Dict[str, Any]) -> ImageDescriptor:
    return ImageDescriptor(
        id=int(data.get("id") or 0),
        name=data.get("name") or "",
        created=data.get("created") or "",
        disk_size=float(data.get("disk_size") or 0),
        os_flavor=data.get("os_flavor") or "",
        os_version=data.get("os_version") or "",
        status=data.get("status") or "",
        type=data.get("type") or "",
        description=data.get("description"),
        architecture=data.get("architecture"),
        labels=dict(data.get("labels") or {}),
    )


class HcloudClient:
    """Minimal JSON client for the Hetzner Cloud API."""

    def __init__(
        self,
        token: str,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.5,
        user_agent: str = "hcloud-upload-image-provider",
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("endpoint is required")
        self.endpoint = endpoint.rstrip("/")
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("huip.http")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "User-Agent": user_agent,
        })

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HcloudClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------- Resource helpers -------------

    def get_server_type_by_name(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[ServerType]:
        data = self._request("GET", "/server_types", params={"name": name}, cancel=cancel)
        items = data.get("server_types") or []
        if not items:
            return None
        st = items[0]
        return ServerType(id=int(st["id"]), name=st.get("name") or name, architecture=st.get("architecture"))

    def get_image_by_id(self, image_id: int, cancel: Optional[CancelToken] = None) -> Optional[ImageDescriptor]:
        """Return the image, or None when the API reports it does not exist."""
        try:
            data = self._request("GET", f"/images/{int(image_id)}", cancel=cancel)
        except HcloudApiError as e:
            if e.is_not_found:
                return None
            raise
        image = data.get("image")
        if not image:
            return None
        return descriptor_from_json(image)

    def update_image(
        self,
        image_id: int,
        *,
        description: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ImageDescriptor:
        payload: Dict[str, Any] = {}
        if description is not None:
            payload["description"] = description
        if labels is not None:
            payload["labels"] = dict(labels)
        data = self._request("PUT", f"/images/{int(image_id)}", json_body=payload, cancel=cancel)
        return descriptor_from_json(data.get("image") or {"id": image_id})

    def delete_image(self, image_id: int, cancel: Optional[CancelToken] = None) -> None:
        self._request("DELETE", f"/images/{int(image_id)}", cancel=cancel)

    def list_images(
        self,
        *,
        label_selector: Optional[str] = None,
        image_type: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> List[ImageDescriptor]:
        params: Dict[str, Any] = {}
        if label_selector:
            params["label_selector"] = label_selector
        if image_type:
            params["type"] = image_type
        data = self._request("GET", "/images", params=params, cancel=cancel)
        return [descriptor_from_json(i) for i in data.get("images") or []]

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Dict[str, Any]:
        cancel = cancel or never()
        url = self._url(path)
        attempts = self.retries + 1
        last_err: Optional[HcloudApiError] = None

        for attempt in range(attempts):
            cancel.raise_if_cancelled(f"{method} {path}")
            start = time.monotonic()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_body,
                    timeout=max(cancel.remaining(self.timeout), _MIN_TIMEOUT),
                )
            except requests.RequestException as e:
                err = HcloudApiError(status=0, url=url, message=str(e))
                self.log.warning("%s %s failed: %s", method, path, e)
                if attempt < attempts - 1:
                    last_err = err
                    if cancel.wait(self._delay(attempt)):
                        break
                    continue
                raise err from e

            elapsed = (time.monotonic() - start) * 1000
            if resp.status_code >= 400:
                err = self._error_from_response(resp, url)
                self.log.warning("%s %s -> %s: %s", method, path, resp.status_code, err.message or err.body[:_LOG_PREVIEW])
                if 500 <= resp.status_code < 600 and attempt < attempts - 1:
                    last_err = err
                    if cancel.wait(self._delay(attempt)):
                        break
                    continue
                raise err

            self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
            if resp.status_code == 204 or not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as e:
                raise HcloudApiError(status=resp.status_code, url=url, message="invalid JSON response",
                                     body=resp.text[:_LOG_PREVIEW]) from e

        # Backoff interrupted by cancellation
        cancel.raise_if_cancelled(f"{method} {path}")
        assert last_err is not None
        raise last_err

    def _delay(self, attempt: int) -> float:
        return self.backoff * (2 ** attempt)

    @staticmethod
    def _error_from_response(resp: requests.Response, url: str) -> HcloudApiError:
        code, message = "", ""
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            code = str(body["error"].get("code") or "")
            message = str(body["error"].get("message") or "")
        return HcloudApiError(
            status=resp.status_code,
            url=url,
            code=code,
            message=message,
            body=resp.text[:_LOG_PREVIEW],
        )
