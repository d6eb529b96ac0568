from dataclasses import replace

import pytest

from hcloud_upload_image_provider.core.cancellation import CancelToken
from hcloud_upload_image_provider.core.errors import (
    ErrorKind,
    InvalidIdentityError,
    NotFoundError,
    OperationCancelled,
    RemoteError,
    UnsupportedValueError,
    UploadError,
    ValidationError,
)
from hcloud_upload_image_provider.core.hcloud_client import HcloudApiError
from hcloud_upload_image_provider.core.lifecycle import parse_identity
from hcloud_upload_image_provider.core.models import (
    Architecture,
    Compression,
    DesiredSpec,
    ImageFormat,
    ObservedState,
    RemoteAttributes,
)
from hcloud_upload_image_provider.core.state_codec import to_state


SPEC = DesiredSpec(
    credential="TOKEN",
    architecture="x86",
    source_url="https://example.com/talos.raw.xz",
    compression="xz",
    format="raw",
    description="talos",
    labels={"os": "talos"},
)


# ---------- Create ----------

def test_create_uploads_and_populates_state(controller, world):
    image_id, state = controller.create("my-image", SPEC)

    assert image_id == "4711"
    assert state.spec == SPEC
    assert state.remote.image_id == 4711
    assert state.remote.status == "available"
    assert state.remote.image_type == "snapshot"
    assert state.remote.disk_size == 5

    (opts,) = world.uploader.uploads
    assert opts.source_url == SPEC.source_url
    assert opts.compression is Compression.XZ
    assert opts.format is ImageFormat.RAW
    assert opts.architecture is Architecture.X86
    assert opts.server_type is None
    assert opts.labels == {"os": "talos"}
    assert world.uploader_tokens == ["TOKEN"]


def test_create_empty_credential_fails_before_any_call(controller, world):
    with pytest.raises(ValidationError) as exc:
        controller.create("img", replace(SPEC, credential=""))
    assert "credential required" in str(exc.value)
    assert exc.value.kind is ErrorKind.VALIDATION
    assert world.remote_calls == 0
    assert world.client_tokens == []


def test_create_requires_source(controller, world):
    with pytest.raises(ValidationError) as exc:
        controller.create("img", replace(SPEC, source_url=None))
    assert "source required" in str(exc.value)
    assert world.remote_calls == 0


def test_create_requires_architecture(controller, world):
    with pytest.raises(ValidationError):
        controller.create("img", replace(SPEC, architecture=""))
    assert world.remote_calls == 0


def test_create_dry_run_makes_no_calls(controller, world):
    image_id, state = controller.create("preview", SPEC, dry_run=True)
    assert image_id == "preview"
    assert state == to_state(SPEC)
    assert state.remote == RemoteAttributes()
    assert world.remote_calls == 0
    assert world.client_tokens == [] and world.uploader_tokens == []


def test_create_unsupported_architecture(controller, world):
    with pytest.raises(UnsupportedValueError) as exc:
        controller.create("img", replace(SPEC, architecture="mips"))
    assert exc.value.field == "architecture"
    assert exc.value.value == "mips"
    assert "architecture" in str(exc.value) and "mips" in str(exc.value)
    assert world.uploader.uploads == []


@pytest.mark.parametrize("field, value, key", [
    ("compression", "zip", "imageCompression"),
    ("format", "vmdk", "imageFormat"),
])
def test_create_unsupported_enum_values(controller, world, field, value, key):
    with pytest.raises(UnsupportedValueError) as exc:
        controller.create("img", replace(SPEC, **{field: value}))
    assert exc.value.field == key
    assert world.uploader.uploads == []


def test_create_empty_enums_fall_back_to_defaults(controller, world):
    controller.create("img", replace(SPEC, compression="", format=None))
    (opts,) = world.uploader.uploads
    assert opts.compression is Compression.NONE
    assert opts.format is ImageFormat.RAW


def test_create_rejects_malformed_url(controller, world):
    with pytest.raises(ValidationError) as exc:
        controller.create("img", replace(SPEC, source_url="not a url"))
    assert "invalid source URL" in str(exc.value)
    assert world.remote_calls == 0


def test_create_resolves_server_type(controller, world):
    controller.create("img", replace(SPEC, server_type_override="cx22"))
    (opts,) = world.uploader.uploads
    assert opts.server_type.name == "cx22"
    assert opts.server_type.id == 104


def test_create_unknown_server_type(controller, world):
    with pytest.raises(NotFoundError) as exc:
        controller.create("img", replace(SPEC, server_type_override="nope"))
    assert "nope" in str(exc.value)
    assert world.uploader.uploads == []


def test_create_server_type_lookup_failure(controller, world):
    world.api.fail["get_server_type_by_name"] = HcloudApiError(status=503, url="/server_types")
    with pytest.raises(RemoteError) as exc:
        controller.create("img", replace(SPEC, server_type_override="cx22"))
    assert isinstance(exc.value.__cause__, HcloudApiError)
    assert world.uploader.uploads == []


def test_create_upload_failure_is_wrapped_and_not_retried(controller, world):
    boom = RuntimeError("rescue mode failed")
    world.uploader.error = boom
    with pytest.raises(UploadError) as exc:
        controller.create("img", SPEC)
    assert exc.value.cause is boom
    assert exc.value.__cause__ is boom
    assert len(world.uploader.uploads) == 1


def test_create_respects_cancellation(controller, world):
    token = CancelToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        controller.create("img", SPEC, cancel=token)
    assert world.uploader.uploads == []


# ---------- Read ----------

def _created(controller):
    image_id, state = controller.create("img", SPEC)
    return image_id, state


def test_read_refreshes_remote_fields(controller, world):
    image_id, state = _created(controller)
    world.api.images[4711] = replace(world.api.images[4711], status="creating", disk_size=7.9)

    refreshed = controller.read(image_id, SPEC, state)
    assert refreshed.remote.status == "creating"
    assert refreshed.remote.disk_size == 7
    assert refreshed.spec == state.spec


def test_read_keeps_prior_spec_fields(controller, world):
    image_id, state = _created(controller)
    newer = replace(SPEC, description="changed")
    refreshed = controller.read(image_id, newer, state)
    assert refreshed.spec.description == "talos"


def test_read_vanished_image_returns_none(controller, world):
    assert controller.read("999", SPEC, to_state(SPEC)) is None


def test_read_invalid_identity(controller, world):
    for bad in ("abc", "", "12.5", "99999999999999999999"):
        with pytest.raises(InvalidIdentityError):
            controller.read(bad, SPEC, to_state(SPEC))
    assert world.remote_calls == 0


def test_read_requires_credential(controller, world):
    with pytest.raises(ValidationError):
        controller.read("1", replace(SPEC, credential=""), to_state(SPEC))
    assert world.remote_calls == 0


def test_read_remote_failure(controller, world):
    world.api.fail["get_image_by_id"] = HcloudApiError(status=500, url="/images/1")
    with pytest.raises(RemoteError):
        controller.read("1", SPEC, to_state(SPEC))


# ---------- Update ----------

def test_update_sends_only_description_and_labels(controller, world):
    image_id, state = _created(controller)
    newer = replace(SPEC, description="v2", labels={"os": "talos", "v": "2"}, compression="bz2", credential="NEW")

    updated = controller.update(image_id, newer, state)

    call = world.api.calls[-1]
    assert call == ("update_image", 4711, "v2", {"os": "talos", "v": "2"})
    assert world.client_tokens[-1] == "NEW"
    assert updated.spec == newer
    assert updated.remote.image_id == 4711


def test_update_omits_absent_fields(controller, world):
    image_id, state = _created(controller)
    controller.update(image_id, replace(SPEC, description=None, labels=None), state)
    assert world.api.calls[-1] == ("update_image", 4711, None, None)


@pytest.mark.parametrize("changes", [
    {"source_url": "https://example.com/other.raw"},
    {"architecture": "arm"},
])
def test_update_rejects_replace_fields(controller, world, changes):
    image_id, state = _created(controller)
    calls_before = len(world.api.calls)
    with pytest.raises(ValidationError) as exc:
        controller.update(image_id, replace(SPEC, **changes), state)
    assert "replacement" in str(exc.value)
    assert len(world.api.calls) == calls_before


def test_update_missing_image(controller, world):
    with pytest.raises(NotFoundError):
        controller.update("31337", SPEC, to_state(SPEC))


def test_update_remote_failure(controller, world):
    image_id, state = _created(controller)
    world.api.fail["update_image"] = HcloudApiError(status=422, url="/images/4711", code="invalid_input")
    with pytest.raises(RemoteError):
        controller.update(image_id, SPEC, state)


# ---------- Delete ----------

def test_delete_uses_stored_credential(controller, world):
    image_id, state = _created(controller)
    controller.delete(image_id, state)
    assert 4711 not in world.api.images
    assert world.client_tokens[-1] == "TOKEN"


def test_delete_is_idempotent(controller, world):
    image_id, state = _created(controller)
    controller.delete(image_id, state)
    controller.delete(image_id, state)
    assert [c for c in world.api.calls if c[0] == "delete_image"] == [
        ("delete_image", 4711),
        ("delete_image", 4711),
    ]


def test_delete_invalid_identity(controller, world):
    with pytest.raises(InvalidIdentityError):
        controller.delete("image-1", to_state(SPEC))


def test_delete_remote_failure(controller, world):
    world.api.fail["delete_image"] = HcloudApiError(status=423, url="/images/1", code="locked")
    state = ObservedState(spec=SPEC, remote=RemoteAttributes(image_id=1))
    with pytest.raises(RemoteError) as exc:
        controller.delete("1", state)
    assert exc.value.cause.code == "locked"


def test_parse_identity_bounds():
    assert parse_identity("42") == 42
    assert parse_identity("9223372036854775807") == 2 ** 63 - 1
    with pytest.raises(InvalidIdentityError):
        parse_identity("9223372036854775808")


@pytest.mark.parametrize("raw", [" 42", "42\n", " 42\n", "4 2"])
def test_parse_identity_rejects_surrounding_whitespace(raw):
    with pytest.raises(InvalidIdentityError):
        parse_identity(raw)


def test_clients_are_closed_after_each_operation(controller, world):
    image_id, state = _created(controller)
    assert world.api.closed == 1
    controller.read(image_id, SPEC, state)
    controller.update(image_id, SPEC, state)
    controller.delete(image_id, state)
    assert world.api.closed == 4


def test_client_is_closed_when_upload_fails(controller, world):
    world.uploader.error = RuntimeError("boom")
    with pytest.raises(UploadError):
        controller.create("img", SPEC)
    assert world.api.closed == 1
