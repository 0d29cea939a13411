"""Unit tests for WorkflowController transitions and camera ownership."""

import asyncio
import dataclasses

import pytest

from checkpost_verify.camera.resource import CameraResource
from checkpost_verify.camera.types import CameraErrorKind, CameraPermissionState
from checkpost_verify.scan import decoder as decoder_module
from checkpost_verify.scan.decoder import CodeDecoder
from checkpost_verify.upload.uploader import UploadFailureReason, UploadResult
from checkpost_verify.workflow.controller import WorkflowController
from checkpost_verify.workflow.state import (
    CameraError,
    Capturing,
    Idle,
    Reviewing,
    ScanConfirmed,
    Scanning,
    UploadFailed,
    Uploading,
    Verified,
)

from tests.infrastructure.helpers import (
    FAST_SETTINGS,
    build_workflow,
    wait_for_preview,
    wait_for_state,
    wait_until,
)
from tests.infrastructure.mocks import FRONT, REAR, FakeCameraBackend, FakeUploader

ID = "12-34-567"
SLOW_CONFIRM = dataclasses.replace(FAST_SETTINGS, confirm_delay=0.5)
NETWORK_FAILURE = UploadResult.failure(UploadFailureReason.NETWORK, "connection reset")


async def reach_reviewing(harness):
    controller = harness.controller
    await controller.start()
    await wait_for_state(controller, Capturing)
    await wait_for_preview(controller)
    assert await controller.capture()
    return controller.state


class TestStart:

    @pytest.mark.asyncio
    async def test_start_enters_scanning(self):
        harness = build_workflow()

        async with harness.controller as controller:
            assert await controller.start()

            assert isinstance(controller.state, Scanning)
            assert harness.camera.active_handle is not None
            assert controller.view_flags().scanning_active

    @pytest.mark.asyncio
    async def test_start_only_from_idle(self):
        harness = build_workflow()

        async with harness.controller as controller:
            await controller.start()

            assert await controller.start() is False
            assert harness.camera.acquire_count == 1

    @pytest.mark.asyncio
    async def test_unsupported_platform_never_scans(self):
        harness = build_workflow(backend=FakeCameraBackend(access_error=CameraErrorKind.UNSUPPORTED))

        async with harness.controller as controller:
            assert await controller.start() is False

            assert isinstance(controller.state, CameraError)
            assert controller.state.kind is CameraErrorKind.UNSUPPORTED
            assert harness.state_names() == ["Idle", "CameraError"]
            assert harness.camera.permission_state is CameraPermissionState.UNSUPPORTED
            assert harness.camera.acquire_count == 0

    @pytest.mark.asyncio
    async def test_missing_qr_decoder_shows_error_panel(self, monkeypatch):
        monkeypatch.setattr(decoder_module, "decode", None)
        camera = CameraResource(FakeCameraBackend())
        controller = WorkflowController(camera, FakeUploader(), settings=FAST_SETTINGS, decoder=CodeDecoder(rate_hz=0))

        async with controller:
            assert await controller.start() is False
            await asyncio.sleep(0.05)

            state = controller.state
            assert isinstance(state, CameraError)
            assert state.kind is CameraErrorKind.UNSUPPORTED
            assert controller.view_flags().show_error_panel
            assert not controller.view_flags().scanning_active

        assert camera.active_handle is None
        assert camera.acquire_count == camera.release_count == 1

    @pytest.mark.asyncio
    async def test_denied_shows_error_panel_and_restart_recovers(self):
        backend = FakeCameraBackend(access_error=CameraErrorKind.DENIED)
        harness = build_workflow(backend=backend)

        async with harness.controller as controller:
            await controller.start()
            flags = controller.view_flags()
            assert flags.show_error_panel
            assert flags.can_restart
            assert "denied" in flags.message

            backend.access_error = None
            assert await controller.restart()

            assert isinstance(controller.state, Scanning)

    @pytest.mark.asyncio
    async def test_no_camera(self):
        harness = build_workflow(backend=FakeCameraBackend(devices=[]))

        async with harness.controller as controller:
            await controller.start()

            assert controller.state.kind is CameraErrorKind.UNAVAILABLE
            assert controller.state.message == "No camera found on this device."


class TestScanning:

    @pytest.mark.asyncio
    async def test_exactly_one_confirmation(self):
        harness = build_workflow(None, None, "99-99-999", "11-11-111")

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)

            confirmed = [s for s in harness.states if isinstance(s, ScanConfirmed)]
            assert len(confirmed) == 1
            assert confirmed[0].identifier == "99-99-999"
            assert controller.state.identifier == "99-99-999"
            assert harness.cues == [1]

    @pytest.mark.asyncio
    async def test_invalid_payloads_keep_scanning(self):
        harness = build_workflow("hello", "12-34-56", None, "AB-12-345")

        async with harness.controller as controller:
            await controller.start()
            await wait_until(lambda: harness.payloads.remaining == 0)
            await asyncio.sleep(0.02)

            assert isinstance(controller.state, Scanning)
            assert controller.view_flags().scanning_active
            assert harness.cues == []

    @pytest.mark.asyncio
    async def test_scan_camera_released_before_confirmation(self):
        harness = build_workflow(ID)
        owned_on_confirm = []

        def observer(state):
            if isinstance(state, ScanConfirmed):
                owned_on_confirm.append(harness.camera.active_handle)

        harness.controller.subscribe(observer)
        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)

        assert owned_on_confirm == [None]

    @pytest.mark.asyncio
    async def test_lost_camera_goes_to_error(self):
        harness = build_workflow(backend=FakeCameraBackend(fail_reads_after=3))

        async with harness.controller as controller:
            await controller.start()
            state = await wait_for_state(controller, CameraError)

            assert state.kind is CameraErrorKind.UNAVAILABLE
            assert harness.camera.active_handle is None
            assert harness.camera.acquire_count == harness.camera.release_count

    @pytest.mark.asyncio
    async def test_latch_resets_on_new_scan(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)
            await wait_for_preview(controller)
            assert await controller.cancel()
            assert isinstance(controller.state, Scanning)

            harness.payloads.extend("76-54-321")
            state = await wait_for_state(controller, Capturing)

            assert state.identifier == "76-54-321"
            assert len([s for s in harness.states if isinstance(s, ScanConfirmed)]) == 2


class TestCapture:

    @pytest.mark.asyncio
    async def test_capture_before_preview_ready_is_noop(self):
        harness = build_workflow(ID, settings=SLOW_CONFIRM)

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, ScanConfirmed)

            assert await controller.capture() is False
            assert controller.view_flags().can_capture is False

    @pytest.mark.asyncio
    async def test_capture_moves_to_reviewing_and_releases(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            state = await reach_reviewing(harness)

            assert isinstance(state, Reviewing)
            assert state.identifier == ID
            assert state.image.data[:2] == b"\xff\xd8"
            assert harness.camera.active_handle is None
            assert controller.preview_frame() is None
            flags = controller.view_flags()
            assert flags.can_retake and flags.can_confirm and not flags.can_capture

    @pytest.mark.asyncio
    async def test_capture_uses_capture_constraints(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            await reach_reviewing(harness)

        resolutions = [stream.constraints.resolution for stream in harness.backend.streams]
        assert resolutions == [(640, 480), (1920, 1080)]

    @pytest.mark.asyncio
    async def test_cancel_rescans_with_fresh_acquisition(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)
            await wait_for_preview(controller)
            checks = harness.backend.check_calls

            assert await controller.cancel()

            assert isinstance(controller.state, Scanning)
            assert harness.backend.check_calls == checks + 1
            assert "Idle" in harness.state_names()[-2:]

        assert harness.camera.acquire_count == harness.camera.release_count == 3

    @pytest.mark.asyncio
    async def test_cancel_while_preview_opening(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)
            await controller.cancel()

            assert isinstance(controller.state, Scanning)

        assert harness.camera.acquire_count == harness.camera.release_count


class TestReviewAndUpload:

    @pytest.mark.asyncio
    async def test_retake_then_confirm_uploads_new_image(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            discarded = (await reach_reviewing(harness)).image
            assert await controller.retake()
            assert isinstance(controller.state, Capturing)
            await wait_for_preview(controller)
            assert await controller.capture()
            kept = controller.state.image
            assert await controller.confirm()
            await wait_for_state(controller, Verified)

        assert kept is not discarded
        assert len(harness.uploader.calls) == 1
        assert harness.uploader.calls[0][1] is kept

    @pytest.mark.asyncio
    async def test_confirm_uploads_and_verifies(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            image = (await reach_reviewing(harness)).image
            assert await controller.confirm()
            assert controller.view_flags().is_uploading
            state = await wait_for_state(controller, Verified)

            assert state.identifier == ID
            assert controller.view_flags().upload_success
            assert harness.uploader.calls == [(ID, image)]

    @pytest.mark.asyncio
    async def test_retry_reuploads_identical_image(self):
        harness = build_workflow(ID, uploader=FakeUploader([NETWORK_FAILURE]))

        async with harness.controller as controller:
            await reach_reviewing(harness)
            await controller.confirm()
            failed = await wait_for_state(controller, UploadFailed)
            assert controller.view_flags().upload_error == "connection reset"
            assert failed.result.reason is UploadFailureReason.NETWORK

            assert await controller.retry()
            await wait_for_state(controller, Verified)

        (first_id, first_image), (second_id, second_image) = harness.uploader.calls
        assert first_id == second_id == ID
        assert second_image is first_image

    @pytest.mark.asyncio
    async def test_retake_after_failure(self):
        harness = build_workflow(ID, uploader=FakeUploader([NETWORK_FAILURE]))

        async with harness.controller as controller:
            await reach_reviewing(harness)
            await controller.confirm()
            await wait_for_state(controller, UploadFailed)

            assert await controller.retake()
            assert isinstance(controller.state, Capturing)
            assert controller.state.identifier == ID

    @pytest.mark.asyncio
    async def test_retake_cancels_upload_and_drops_result(self):
        uploader = FakeUploader(hold=True)
        harness = build_workflow(ID, uploader=uploader)

        async with harness.controller as controller:
            await reach_reviewing(harness)
            await controller.confirm()
            await wait_until(lambda: len(uploader.calls) == 1)
            assert controller.view_flags().can_cancel_upload

            assert await controller.retake()
            uploader.release()
            await asyncio.sleep(0.02)

            assert isinstance(controller.state, Capturing)
            assert uploader.cancelled == 1
            assert not any(isinstance(s, (Verified, UploadFailed)) for s in harness.states)

    @pytest.mark.asyncio
    async def test_capture_not_possible_while_uploading(self):
        harness = build_workflow(ID, uploader=FakeUploader(hold=True))

        async with harness.controller as controller:
            await reach_reviewing(harness)
            await controller.confirm()

            assert await controller.capture() is False
            assert await controller.confirm() is False
            assert isinstance(controller.state, Uploading)


class TestOwnershipRules:

    @pytest.mark.asyncio
    async def test_torch_only_while_camera_owned(self):
        harness = build_workflow(backend=FakeCameraBackend(torch_supported=True))

        async with harness.controller as controller:
            assert await controller.set_torch(True) is False
            await controller.start()
            await wait_until(lambda: controller.view_flags().camera_owned)
            assert await controller.set_torch(True) is True
            assert harness.backend.streams[0].torch_calls == [True]

            harness.payloads.extend(ID)
            await reach_reviewing_from_capturing(controller)
            await wait_for_state(controller, Reviewing)
            assert await controller.set_torch(True) is False

    @pytest.mark.asyncio
    async def test_unsupported_torch_returns_false(self):
        harness = build_workflow()

        async with harness.controller as controller:
            await controller.start()

            assert await controller.set_torch(True) is False
            assert isinstance(controller.state, Scanning)

    @pytest.mark.asyncio
    async def test_switch_camera_while_scanning(self):
        harness = build_workflow()

        async with harness.controller as controller:
            await controller.start()
            await wait_until(lambda: harness.payloads.calls >= 1)

            assert await controller.switch_camera(FRONT.device_id)
            harness.payloads.extend(ID)
            state = await wait_for_state(controller, Capturing)

        assert state.identifier == ID
        assert harness.backend.opened_ids[:2] == [REAR.device_id, FRONT.device_id]
        assert harness.camera.acquire_count == harness.camera.release_count

    @pytest.mark.asyncio
    async def test_switch_camera_while_capturing(self):
        harness = build_workflow(ID)

        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)
            await wait_for_preview(controller)

            assert await controller.switch_camera(FRONT.device_id)
            assert harness.camera.active_handle.device == FRONT
            await wait_for_preview(controller)
            assert await controller.capture()

        assert harness.camera.acquire_count == harness.camera.release_count

    @pytest.mark.asyncio
    async def test_switch_failure_goes_to_error(self):
        harness = build_workflow(backend=FakeCameraBackend(fail_open={FRONT.device_id}))

        async with harness.controller as controller:
            await controller.start()

            assert await controller.switch_camera(FRONT.device_id) is False
            state = await wait_for_state(controller, CameraError)

            assert state.kind is CameraErrorKind.UNAVAILABLE
            assert harness.camera.active_handle is None

    @pytest.mark.asyncio
    async def test_switch_unknown_or_unowned_is_noop(self):
        harness = build_workflow()

        async with harness.controller as controller:
            assert await controller.switch_camera(FRONT.device_id) is False
            await controller.start()
            assert await controller.switch_camera("missing") is False
            assert isinstance(controller.state, Scanning)

    @pytest.mark.asyncio
    async def test_list_cameras(self):
        harness = build_workflow()

        async with harness.controller as controller:
            await controller.start()

            assert await controller.list_cameras() == [REAR, FRONT]

    @pytest.mark.asyncio
    async def test_preview_frame_while_scanning(self):
        harness = build_workflow()

        async with harness.controller as controller:
            await controller.start()
            await wait_until(lambda: controller.preview_frame() is not None)


async def reach_reviewing_from_capturing(controller):
    state = await wait_for_state(controller, Capturing)
    assert state.identifier == ID
    await wait_for_preview(controller)
    assert await controller.capture()


class TestResourceAccounting:

    @pytest.mark.asyncio
    async def test_full_cycle_balances(self):
        harness = build_workflow(ID)
        camera = harness.camera

        async with harness.controller as controller:
            await reach_reviewing(harness)
            await controller.confirm()
            await wait_for_state(controller, Verified)
            assert camera.active_handle is None
            assert camera.acquire_count == camera.release_count == 2

            assert await controller.restart()
            assert isinstance(controller.state, Scanning)

        assert isinstance(controller.state, Idle)
        assert camera.acquire_count == camera.release_count == 3
        assert harness.backend.live_streams == []
        assert harness.state_names()[:9] == [
            "Idle",
            "Scanning",
            "ScanConfirmed",
            "Capturing",
            "Reviewing",
            "Uploading",
            "Verified",
            "Idle",
            "Scanning",
        ]

    @pytest.mark.asyncio
    async def test_close_during_scanning(self):
        harness = build_workflow()
        controller = harness.controller
        await controller.start()

        await controller.close()
        await controller.close()

        assert isinstance(controller.state, Idle)
        assert controller.tasks.active_count() == 0
        assert harness.camera.acquire_count == harness.camera.release_count == 1

    @pytest.mark.asyncio
    async def test_close_during_confirm_delay(self):
        harness = build_workflow(ID, settings=SLOW_CONFIRM)
        controller = harness.controller
        await controller.start()
        await wait_for_state(controller, ScanConfirmed)

        await controller.close()
        await asyncio.sleep(0.05)

        assert isinstance(controller.state, Idle)
        assert harness.camera.acquire_count == harness.camera.release_count == 1

    @pytest.mark.asyncio
    async def test_close_during_capture_preview(self):
        harness = build_workflow(ID)
        controller = harness.controller
        await controller.start()
        await wait_for_state(controller, Capturing)
        await wait_for_preview(controller)

        await controller.close()

        assert harness.camera.acquire_count == harness.camera.release_count == 2
        assert harness.backend.live_streams == []

    @pytest.mark.asyncio
    async def test_close_during_upload(self):
        uploader = FakeUploader(hold=True)
        harness = build_workflow(ID, uploader=uploader)
        controller = harness.controller
        await reach_reviewing(harness)
        await controller.confirm()
        await wait_until(lambda: len(uploader.calls) == 1)

        await controller.close()

        assert isinstance(controller.state, Idle)
        assert uploader.cancelled == 1
        assert harness.camera.acquire_count == harness.camera.release_count


class TestObservers:

    @pytest.mark.asyncio
    async def test_subscriber_errors_do_not_break_transitions(self):
        harness = build_workflow(ID)

        def broken(state):
            if not isinstance(state, Idle):
                raise ValueError("observer bug")

        harness.controller.subscribe(broken)
        async with harness.controller as controller:
            await controller.start()
            await wait_for_state(controller, Capturing)

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        harness = build_workflow()
        seen = []
        harness.controller.subscribe(seen.append)
        harness.controller.unsubscribe(seen.append)

        async with harness.controller as controller:
            await controller.start()

        assert len(seen) == 1
