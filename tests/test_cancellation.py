import asyncio

import pytest

from utils.cancellation import CancellationToken, run_with_token
from utils.errors import ErrorKind, RequestCancelledError, classify_error


@pytest.mark.asyncio
async def test_run_returns_result():
    token = CancellationToken()

    async def work():
        return 42

    assert await token.run(work()) == 42


@pytest.mark.asyncio
async def test_cancel_aborts_running_task():
    token = CancellationToken("detail")
    reached_end = False

    async def work():
        nonlocal reached_end
        await asyncio.sleep(10)
        reached_end = True

    task = asyncio.create_task(token.run(work()))
    await asyncio.sleep(0.01)
    token.cancel("superseded")

    with pytest.raises(RequestCancelledError) as exc_info:
        await task

    assert not reached_end
    assert "superseded" in exc_info.value.message
    assert classify_error(exc_info.value) == ErrorKind.CANCELLED


@pytest.mark.asyncio
async def test_cancelled_token_refuses_new_work():
    token = CancellationToken()
    token.cancel()

    with pytest.raises(RequestCancelledError):
        await token.run(asyncio.sleep(0))

    with pytest.raises(RequestCancelledError):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_outer_cancellation_is_not_translated():
    token = CancellationToken()

    async def caller():
        return await token.run(asyncio.sleep(10))

    task = asyncio.create_task(caller())
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not token.is_cancelled


@pytest.mark.asyncio
async def test_with_timeout():
    token = CancellationToken.with_timeout(0.01)

    with pytest.raises(RequestCancelledError) as exc_info:
        await token.run(asyncio.sleep(10))

    assert token.is_cancelled
    assert "timed out" in token.reason
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_linked_token_follows_parents():
    parent = CancellationToken("parent")
    other = CancellationToken("other")
    child = parent.linked(other)

    other.cancel("other went away")

    assert child.is_cancelled
    assert child.reason == "other went away"
    assert not parent.is_cancelled


def test_callbacks_run_once():
    token = CancellationToken()
    calls = []
    token.add_callback(lambda: calls.append("first"))

    token.cancel()
    token.cancel()
    assert calls == ["first"]

    # Registered after cancellation: runs immediately
    token.add_callback(lambda: calls.append("late"))
    assert calls == ["first", "late"]


@pytest.mark.asyncio
async def test_run_with_token_without_token():
    async def work():
        return "done"

    assert await run_with_token(work(), None) == "done"
