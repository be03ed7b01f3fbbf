"""
Status Observer tests — backoff schedule, terminal callbacks, transport
errors, and restarting on a different run.
状态轮询器测试：退避节奏、终态回调、传输错误以及切换观察对象。
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from dag.scheduler import DependencyScheduler
from executors.function import FunctionNodeExecutor
from observer.poller import RunFailedError, StatusObserver, store_fetcher
from schema import Run, RunStatus, utcnow
from store.base import RunNotFoundError
from store.memory import InMemoryRunStore


def _run(status: RunStatus, run_id: str = "run-1", error: str | None = None) -> Run:
    return Run(run_id=run_id, start_time=utcnow(), status=status, error=error)


class _FakeSleep:
    """Records requested delays and yields once instead of sleeping."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def _observer(fetch, sleep: _FakeSleep, **kwargs) -> StatusObserver:
    params = dict(initial_delay=0.5, initial_interval=1.0, max_interval=5.0, backoff=1.5, max_errors=3)
    params.update(kwargs)
    return StatusObserver(fetch, sleep=sleep, **params)


class TestSchedule:

    @pytest.mark.asyncio
    async def test_backoff_grows_and_caps(self):
        """0.5 first, then 1.5, 2.25, 3.375 and capped at 5.0."""
        responses = [_run(RunStatus.RUNNING)] * 6 + [_run(RunStatus.COMPLETED)]
        fetch = AsyncMock(side_effect=responses)
        sleep = _FakeSleep()

        obs = _observer(fetch, sleep)
        obs.watch("run-1")
        await obs.wait()

        assert sleep.delays == [0.5, 1.5, 2.25, 3.375, 5.0, 5.0, 5.0]
        assert fetch.await_count == 7
        assert obs.interval == 5.0
        assert not obs.is_polling

    @pytest.mark.asyncio
    async def test_watch_resets_interval_and_cancels_previous_loop(self):
        seen: list[str] = []

        async def fetch(run_id: str):
            seen.append(run_id)
            if run_id == "run-2":
                return _run(RunStatus.COMPLETED, run_id="run-2")
            return _run(RunStatus.RUNNING, run_id=run_id)

        sleep = _FakeSleep()
        obs = _observer(fetch, sleep)

        first = obs.watch("run-1")
        for _ in range(10):
            await asyncio.sleep(0)
        assert obs.interval > 1.0

        obs.watch("run-2")
        assert obs.interval == 1.0
        assert obs.run_id == "run-2"
        await obs.wait()
        await asyncio.wait({first})

        assert first.cancelled()
        assert obs.is_complete
        assert seen[-1] == "run-2"
        assert seen.count("run-2") == 1


class TestTerminalStates:

    @pytest.mark.asyncio
    async def test_completed(self):
        updates: list[RunStatus] = []
        completed: list[Run] = []
        errors: list[Exception] = []
        fetch = AsyncMock(side_effect=[_run(RunStatus.RUNNING), _run(RunStatus.COMPLETED)])

        obs = _observer(
            fetch, _FakeSleep(),
            on_update=lambda r: updates.append(r.status),
            on_complete=completed.append,
            on_error=errors.append,
        )
        obs.watch("run-1")
        final = await obs.wait()

        assert updates == [RunStatus.RUNNING, RunStatus.COMPLETED]
        assert completed == [final]
        assert errors == []
        assert obs.is_complete and not obs.is_failed
        assert obs.error is None

    @pytest.mark.asyncio
    async def test_failed_run_reports_run_error(self):
        errors: list[Exception] = []
        fetch = AsyncMock(return_value=_run(RunStatus.FAILED, error="Not all nodes were executed (1/3)"))

        obs = _observer(fetch, _FakeSleep(), on_error=errors.append)
        obs.watch("run-1")
        await obs.wait()

        assert len(errors) == 1
        assert isinstance(errors[0], RunFailedError)
        assert str(errors[0]) == "Not all nodes were executed (1/3)"
        assert errors[0].run.status == RunStatus.FAILED
        assert obs.is_failed
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_run_without_message(self):
        obs = _observer(AsyncMock(return_value=_run(RunStatus.FAILED)), _FakeSleep())
        obs.watch("run-1")
        await obs.wait()
        assert str(obs.error) == "Workflow failed"

    @pytest.mark.asyncio
    async def test_missing_run_stops_with_not_found(self):
        errors: list[Exception] = []

        async def on_error(exc):
            errors.append(exc)

        fetch = AsyncMock(return_value=None)
        obs = _observer(fetch, _FakeSleep(), on_error=on_error)
        obs.watch("run-gone")
        assert await obs.wait() is None

        assert len(errors) == 1
        assert isinstance(errors[0], RunNotFoundError)
        assert errors[0].run_id == "run-gone"
        assert fetch.await_count == 1


class TestTransportErrors:

    @pytest.mark.asyncio
    async def test_errors_are_retried_until_success(self):
        errors: list[Exception] = []
        fetch = AsyncMock(side_effect=[
            ConnectionError("reset"),
            ConnectionError("reset"),
            _run(RunStatus.RUNNING),
            ConnectionError("reset"),
            _run(RunStatus.COMPLETED),
        ])

        obs = _observer(fetch, _FakeSleep(), on_error=errors.append, max_errors=3)
        obs.watch("run-1")
        await obs.wait()

        assert len(errors) == 3
        assert all(isinstance(e, ConnectionError) for e in errors)
        assert obs.is_complete
        assert obs.error is None

    @pytest.mark.asyncio
    async def test_gives_up_after_consecutive_errors(self):
        fetch = AsyncMock(side_effect=ConnectionError("down"))
        sleep = _FakeSleep()

        obs = _observer(fetch, sleep, max_errors=3)
        obs.watch("run-1")
        await obs.wait()

        assert fetch.await_count == 3
        assert isinstance(obs.error, ConnectionError)
        assert not obs.is_polling
        assert obs.run is None

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_stop_polling(self):
        def broken(_run):
            raise RuntimeError("render failed")

        fetch = AsyncMock(side_effect=[_run(RunStatus.RUNNING), _run(RunStatus.COMPLETED)])
        obs = _observer(fetch, _FakeSleep(), on_update=broken)
        obs.watch("run-1")
        await obs.wait()

        assert obs.is_complete


class TestWithScheduler:

    @pytest.mark.asyncio
    async def test_observes_a_live_run_to_completion(self, make_graph):
        store = InMemoryRunStore()
        scheduler = DependencyScheduler(store, FunctionNodeExecutor(lambda *_: "ok"))
        statuses: list[RunStatus] = []

        handle = await scheduler.execute(make_graph([("a", "b"), ("b", "c")]))
        obs = StatusObserver(
            store_fetcher(store),
            initial_delay=0, initial_interval=0.001, max_interval=0.01, backoff=2,
            on_update=lambda r: statuses.append(r.status),
        )
        obs.watch(handle.run_id)
        final = await asyncio.wait_for(obs.wait(), timeout=5)

        assert final.status == RunStatus.COMPLETED
        assert statuses[-1] == RunStatus.COMPLETED
        assert all(n.result == "ok" for n in final.nodes.values())
