"""Test helpers for the verification client test suite.

Usage:
    from tests.infrastructure.helpers import build_workflow, wait_for_state

    harness = build_workflow(None, "12-34-567")
    await harness.controller.start()
    await wait_for_state(harness.controller, ScanConfirmed)
"""

from tests.infrastructure.helpers.workflow import (
    FAST_SETTINGS,
    WorkflowHarness,
    build_workflow,
    wait_for_preview,
    wait_for_state,
    wait_until,
)

__all__ = [
    "FAST_SETTINGS",
    "WorkflowHarness",
    "build_workflow",
    "wait_for_preview",
    "wait_for_state",
    "wait_until",
]
