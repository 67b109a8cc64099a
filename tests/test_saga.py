import logging
from typing import List

import pytest

from app.core.exceptions import DirectoryError, DuplicateError, IdentityError
from app.core.saga import Saga


def _recording_saga(calls: List[str], fail_at: str = "", failing_compensation: str = "") -> Saga:
    saga = Saga("test")
    for name in ("first", "second", "third"):

        async def action(ctx, name=name):
            calls.append(f"do:{name}")
            if name == fail_at:
                raise RuntimeError(f"{name} exploded")
            return name.upper()

        async def undo(ctx, name=name):
            calls.append(f"undo:{name}")
            if name == failing_compensation:
                raise RuntimeError("cannot undo")

        saga.step(name, action, undo)
    return saga


@pytest.mark.asyncio
async def test_steps_run_in_order_and_store_results() -> None:
    calls: List[str] = []
    ctx = await _recording_saga(calls).run()

    assert calls == ["do:first", "do:second", "do:third"]
    assert ctx == {"first": "FIRST", "second": "SECOND", "third": "THIRD"}


@pytest.mark.asyncio
async def test_failure_compensates_completed_steps_in_reverse() -> None:
    calls: List[str] = []
    with pytest.raises(DirectoryError) as exc_info:
        await _recording_saga(calls, fail_at="third").run()

    assert calls == ["do:first", "do:second", "do:third", "undo:second", "undo:first"]
    assert exc_info.value.message == "Failed to third: third exploded"


@pytest.mark.asyncio
async def test_failing_compensation_is_logged_and_skipped(caplog: pytest.LogCaptureFixture) -> None:
    calls: List[str] = []
    with caplog.at_level(logging.ERROR, logger="app.core.saga"):
        with pytest.raises(DirectoryError):
            await _recording_saga(calls, fail_at="third", failing_compensation="second").run()

    assert calls[-2:] == ["undo:second", "undo:first"]
    assert any("compensation for step 'second' failed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_service_errors_propagate_unchanged() -> None:
    original = DuplicateError("Email already exists")

    async def boom(ctx):
        raise original

    with pytest.raises(DuplicateError) as exc_info:
        await Saga("test").step("check", boom).run()
    assert exc_info.value is original


@pytest.mark.asyncio
async def test_step_error_class_and_message_are_used_for_wrapping() -> None:
    async def boom(ctx):
        raise ConnectionError("refused")

    saga = Saga("test").step("create_identity", boom, error_class=IdentityError, error_message="Failed to create user account")
    with pytest.raises(IdentityError) as exc_info:
        await saga.run()
    assert exc_info.value.message == "Failed to create user account: refused"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_step_failure_is_logged_with_traceback(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR, logger="app.core.saga"):
        with pytest.raises(DirectoryError):
            await _recording_saga([], fail_at="second").run()

    record = next(r for r in caplog.records if "step 'second' failed" in r.getMessage())
    assert record.exc_info is not None
    assert "second exploded" in caplog.text
