"""Unit tests for CameraResource ownership, permissions and torch."""

import pytest

from checkpost_verify.camera.resource import CameraResource
from checkpost_verify.camera.types import (
    CameraAccessError,
    CameraBusyError,
    CameraErrorKind,
    CameraPermissionState,
    DeviceLost,
    Facing,
    StreamConstraints,
    TorchUnsupportedError,
    pick_device,
)

from tests.infrastructure.mocks import FRONT, REAR, FakeCameraBackend


class TestRequestAccess:

    @pytest.mark.asyncio
    async def test_grant_picks_preferred_facing(self, camera, fake_backend):
        handle = await camera.request_access(Facing.USER)

        assert handle.device == FRONT
        assert handle.is_live
        assert camera.permission_state is CameraPermissionState.GRANTED
        assert camera.active_handle is handle
        assert camera.acquire_count == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_first_device(self):
        backend = FakeCameraBackend(devices=[FRONT])
        camera = CameraResource(backend)

        handle = await camera.request_access(Facing.ENVIRONMENT)

        assert handle.device == FRONT

    @pytest.mark.asyncio
    async def test_constraints_passed_to_backend(self, camera, fake_backend):
        constraints = StreamConstraints(resolution=(1920, 1080), fps=15.0)

        handle = await camera.request_access(Facing.ENVIRONMENT, constraints)

        assert handle.constraints == constraints
        assert fake_backend.streams[0].constraints == constraints

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind, expected",
        [
            (CameraErrorKind.DENIED, CameraPermissionState.DENIED),
            (CameraErrorKind.UNSUPPORTED, CameraPermissionState.UNSUPPORTED),
            (CameraErrorKind.UNAVAILABLE, CameraPermissionState.UNKNOWN),
        ],
    )
    async def test_access_failures(self, kind, expected):
        camera = CameraResource(FakeCameraBackend(access_error=kind))

        with pytest.raises(CameraAccessError) as excinfo:
            await camera.request_access()

        assert excinfo.value.kind is kind
        assert camera.permission_state is expected
        assert camera.acquire_count == 0

    @pytest.mark.asyncio
    async def test_no_devices_is_unavailable(self):
        camera = CameraResource(FakeCameraBackend(devices=[]))

        with pytest.raises(CameraAccessError) as excinfo:
            await camera.request_access()

        assert excinfo.value.kind is CameraErrorKind.UNAVAILABLE
        assert excinfo.value.message == "No camera found on this device."

    @pytest.mark.asyncio
    async def test_open_failure_is_unavailable(self):
        camera = CameraResource(FakeCameraBackend(fail_open={"cam0"}))

        with pytest.raises(CameraAccessError) as excinfo:
            await camera.request_access(Facing.ENVIRONMENT)

        assert excinfo.value.kind is CameraErrorKind.UNAVAILABLE
        assert camera.active_handle is None

    @pytest.mark.asyncio
    async def test_permission_reset_on_new_acquisition(self):
        backend = FakeCameraBackend(access_error=CameraErrorKind.DENIED)
        camera = CameraResource(backend)
        with pytest.raises(CameraAccessError):
            await camera.request_access()
        assert camera.permission_state is CameraPermissionState.DENIED

        backend.access_error = None
        await camera.request_access()

        assert camera.permission_state is CameraPermissionState.GRANTED
        assert backend.check_calls == 2


class TestExclusivity:

    @pytest.mark.asyncio
    async def test_second_acquire_while_live_raises(self, camera):
        await camera.request_access()

        with pytest.raises(CameraBusyError):
            await camera.request_access()

    @pytest.mark.asyncio
    async def test_release_then_acquire(self, camera, fake_backend):
        first = await camera.request_access()
        await camera.release(first)
        second = await camera.request_access()

        assert second is not first
        assert not first.is_live
        assert fake_backend.streams[0].stop_calls == 1
        assert camera.acquire_count == 2
        assert camera.release_count == 1

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, camera, fake_backend):
        handle = await camera.request_access()

        await camera.release(handle)
        await camera.release(handle)
        await camera.release(None)

        assert fake_backend.streams[0].stop_calls == 1
        assert camera.release_count == 1
        assert camera.active_handle is None

    @pytest.mark.asyncio
    async def test_released_handle_reads_raise(self, camera):
        handle = await camera.request_access()
        await handle.read_frame()
        await camera.release(handle)

        with pytest.raises(DeviceLost):
            await handle.read_frame()


class TestSwitching:

    @pytest.mark.asyncio
    async def test_switch_releases_old_handle(self, camera, fake_backend):
        constraints = StreamConstraints(resolution=(800, 600), fps=20.0)
        old = await camera.request_access(Facing.ENVIRONMENT, constraints)

        new = await camera.switch_to(FRONT.device_id)

        assert not old.is_live
        assert new.is_live
        assert new.device == FRONT
        assert new.constraints == constraints
        assert camera.active_handle is new
        with pytest.raises(DeviceLost):
            await old.read_frame()
        assert fake_backend.opened_ids == [REAR.device_id, FRONT.device_id]

    @pytest.mark.asyncio
    async def test_unknown_device(self, camera):
        handle = await camera.request_access()

        with pytest.raises(CameraAccessError) as excinfo:
            await camera.switch_to("nope")

        assert excinfo.value.kind is CameraErrorKind.UNAVAILABLE
        assert handle.is_live


class TestTorch:

    @pytest.mark.asyncio
    async def test_unsupported_raises(self, camera):
        handle = await camera.request_access()

        with pytest.raises(TorchUnsupportedError):
            await camera.set_torch(handle, True)

    @pytest.mark.asyncio
    async def test_supported(self):
        backend = FakeCameraBackend(torch_supported=True)
        camera = CameraResource(backend)
        handle = await camera.request_access()

        assert await camera.set_torch(handle, True) is True

        assert handle.torch_on is True
        assert backend.streams[0].torch_calls == [True]

    @pytest.mark.asyncio
    async def test_dead_handle_is_noop(self):
        backend = FakeCameraBackend(torch_supported=True)
        camera = CameraResource(backend)
        handle = await camera.request_access()
        await camera.release(handle)

        assert await camera.set_torch(handle, True) is False
        assert await camera.set_torch(None, True) is False
        assert backend.streams[0].torch_calls == []


class TestEnumeration:

    @pytest.mark.asyncio
    async def test_before_grant_labels_hidden(self, camera):
        devices = await camera.enumerate_devices()

        assert [d.device_id for d in devices] == [REAR.device_id, FRONT.device_id]
        assert all(d.label == "" for d in devices)

    @pytest.mark.asyncio
    async def test_after_grant_uses_snapshot(self, camera, fake_backend):
        await camera.request_access()
        calls = fake_backend.list_calls

        devices = await camera.enumerate_devices()

        assert devices == [REAR, FRONT]
        assert fake_backend.list_calls == calls


class TestPickDevice:

    def test_empty(self):
        assert pick_device([], Facing.ENVIRONMENT) is None

    def test_unknown_preference_takes_first(self):
        assert pick_device([FRONT, REAR], Facing.UNKNOWN) == FRONT

    def test_facing_parse(self):
        assert Facing.parse("Environment") is Facing.ENVIRONMENT
        assert Facing.parse("sideways", Facing.USER) is Facing.USER
        assert Facing.parse(None) is Facing.UNKNOWN
