from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from hcloud_upload_image_provider.core.hcloud_client import HcloudApiError
from hcloud_upload_image_provider.core.lifecycle import LifecycleController
from hcloud_upload_image_provider.core.models import ImageDescriptor, ServerType
from hcloud_upload_image_provider.core.provider import UploadedImageProvider


class FakeApi:
    """In-memory stand-in for HcloudClient."""

    def __init__(self) -> None:
        self.images: Dict[int, ImageDescriptor] = {}
        self.server_types: Dict[str, ServerType] = {"cx22": ServerType(id=104, name="cx22", architecture="x86")}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.closed = 0

    def _maybe_fail(self, method: str) -> None:
        if method in self.fail:
            raise self.fail[method]

    def get_server_type_by_name(self, name, cancel=None):
        self.calls.append(("get_server_type_by_name", name))
        self._maybe_fail("get_server_type_by_name")
        return self.server_types.get(name)

    def get_image_by_id(self, image_id, cancel=None):
        self.calls.append(("get_image_by_id", image_id))
        self._maybe_fail("get_image_by_id")
        return self.images.get(image_id)

    def update_image(self, image_id, *, description=None, labels=None, cancel=None):
        self.calls.append(("update_image", image_id, description, labels))
        self._maybe_fail("update_image")
        if image_id not in self.images:
            raise HcloudApiError(status=404, url=f"/images/{image_id}", code="not_found")
        img = self.images[image_id]
        changes = {}
        if description is not None:
            changes["description"] = description
        if labels is not None:
            changes["labels"] = dict(labels)
        self.images[image_id] = replace(img, **changes)
        return self.images[image_id]

    def delete_image(self, image_id, cancel=None):
        self.calls.append(("delete_image", image_id))
        self._maybe_fail("delete_image")
        if image_id not in self.images:
            raise HcloudApiError(status=404, url=f"/images/{image_id}", code="not_found")
        del self.images[image_id]

    def close(self):
        self.closed += 1


class FakeUploader:
    def __init__(self, api: FakeApi) -> None:
        self.api = api
        self.uploads: List = []
        self.cleanups = 0
        self.error: Optional[Exception] = None
        self.cleanup_error: Optional[Exception] = None
        self.cleanup_message: Optional[str] = None
        self.next_id = 4711

    def upload(self, options, cancel):
        self.uploads.append(options)
        if self.error is not None:
            raise self.error
        img = ImageDescriptor(
            id=self.next_id,
            name="",
            created="2024-05-01T10:00:00+00:00",
            disk_size=5.0,
            os_flavor="unknown",
            os_version="",
            status="available",
            type="snapshot",
            description=options.description,
            architecture=options.architecture.value,
            labels=dict(options.labels),
        )
        self.api.images[img.id] = img
        self.next_id += 1
        return img

    def cleanup_temp_resources(self, cancel):
        self.cleanups += 1
        if self.cleanup_error is not None:
            raise self.cleanup_error
        return self.cleanup_message


class World:
    """Fakes plus the credentials each factory was called with."""

    def __init__(self) -> None:
        self.api = FakeApi()
        self.uploader = FakeUploader(self.api)
        self.client_tokens: List[str] = []
        self.uploader_tokens: List[str] = []

    def client_factory(self, token):
        self.client_tokens.append(token)
        return self.api

    def uploader_factory(self, token, client):
        self.uploader_tokens.append(token)
        return self.uploader

    @property
    def remote_calls(self) -> int:
        return len(self.api.calls) + len(self.uploader.uploads) + self.uploader.cleanups


@pytest.fixture
def world():
    return World()


@pytest.fixture
def controller(world):
    return LifecycleController(world.client_factory, world.uploader_factory)


@pytest.fixture
def provider(world):
    return UploadedImageProvider(world.client_factory, world.uploader_factory)
