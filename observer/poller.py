"""
Status Observer - poll a run until it reaches a terminal status.
状态轮询器 —— 反复查询运行记录，直到其到达终态。

Polling schedule:
轮询节奏：
  - first fetch after ``initial_delay``
  - then wait ``interval = min(interval * backoff, max_interval)`` between
    fetches, starting from ``initial_interval``
  - watching a different run cancels the current loop and resets the interval

  - 首次查询在 ``initial_delay`` 之后
  - 之后每次等待 ``interval = min(interval * backoff, max_interval)``，从 ``initial_interval`` 起算
  - 切换观察的 run_id 时取消当前循环并重置间隔

Outcomes:
  - COMPLETED -> on_complete(run), stop
  - FAILED    -> on_error(RunFailedError), stop
  - not found -> on_error(RunNotFoundError), stop
  - fetch raised (transport error) -> on_error(exc), keep polling with
    backoff; stop after ``max_errors`` consecutive transport errors

传输错误与运行失败是两回事：前者按退避策略重试，连续 ``max_errors`` 次后才放弃。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

import config
from schema import Run, RunStatus
from store.base import RunNotFoundError, RunStore

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[Run | None]]


class RunFailedError(RuntimeError):
    """
    Reported to ``on_error`` when the observed run ends FAILED.
    被观察的运行以 FAILED 结束时传给 ``on_error``。
    """

    def __init__(self, run: Run):
        super().__init__(run.error or "Workflow failed")
        self.run = run


def store_fetcher(store: RunStore) -> Fetch:
    """Adapt a RunStore to the observer's fetch signature."""
    return store.get_run


class StatusObserver:
    """
    Cancellable polling loop with exponential backoff.
    可取消、带指数退避的轮询循环。
    """

    def __init__(
        self,
        fetch: Fetch,
        initial_delay: float | None = None,
        initial_interval: float | None = None,
        max_interval: float | None = None,
        backoff: float | None = None,
        max_errors: int | None = None,
        on_update: Callable[[Run], Any] | None = None,
        on_complete: Callable[[Run], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """
        Args:
            fetch: async callable(run_id) -> Run | None
            max_errors: consecutive transport errors tolerated; <= 0 retries forever
            sleep: injectable for tests, defaults to asyncio.sleep
            on_update/on_complete/on_error: sync or async callbacks
        """
        self._fetch = fetch
        self.initial_delay = config.POLL_INITIAL_DELAY if initial_delay is None else initial_delay
        self.initial_interval = config.POLL_INITIAL_INTERVAL if initial_interval is None else initial_interval
        self.max_interval = config.POLL_MAX_INTERVAL if max_interval is None else max_interval
        self.backoff = config.POLL_BACKOFF if backoff is None else backoff
        self.max_errors = config.POLL_MAX_ERRORS if max_errors is None else max_errors
        self._on_update = on_update
        self._on_complete = on_complete
        self._on_error = on_error
        self._sleep = sleep or asyncio.sleep

        self._task: asyncio.Task[None] | None = None
        self._run_id: str | None = None
        self._run: Run | None = None
        self._error: Exception | None = None
        self._interval = self.initial_interval

    # ------------------------------------------------------------------
    # Observed state
    # 观察到的状态
    # ------------------------------------------------------------------

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def run(self) -> Run | None:
        """Latest snapshot fetched."""
        return self._run

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_complete(self) -> bool:
        return self._run is not None and self._run.status == RunStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self._run is not None and self._run.status == RunStatus.FAILED

    # ------------------------------------------------------------------
    # Control
    # 控制
    # ------------------------------------------------------------------

    def watch(self, run_id: str) -> asyncio.Task[None]:
        """
        Start observing ``run_id``, replacing any current observation.
        开始观察 ``run_id``；若正在观察其他运行则先取消。
        """
        self.cancel()
        self._run_id = run_id
        self._run = None
        self._error = None
        self._interval = self.initial_interval
        self._task = asyncio.create_task(self._poll(run_id), name=f"observe-{run_id}")
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug("[Observer] Cancelled polling of %s", self._run_id)

    async def wait(self) -> Run | None:
        """Wait for the current loop to stop; returns the last snapshot."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self._run

    # ------------------------------------------------------------------
    # Polling loop
    # 轮询循环
    # ------------------------------------------------------------------

    async def _poll(self, run_id: str) -> None:
        await self._sleep(self.initial_delay)
        errors = 0

        while True:
            try:
                run = await self._fetch(run_id)
            except Exception as exc:
                errors += 1
                self._error = exc
                logger.warning("[Observer] Poll %d of %s failed: %s", errors, run_id, exc)
                await self._notify(self._on_error, exc)
                if 0 < self.max_errors <= errors:
                    logger.error("[Observer] Giving up on %s after %d consecutive errors", run_id, errors)
                    return
            else:
                errors = 0
                if run is None:
                    self._error = RunNotFoundError(run_id)
                    await self._notify(self._on_error, self._error)
                    return

                self._run = run
                self._error = None
                await self._notify(self._on_update, run)

                if run.status == RunStatus.COMPLETED:
                    await self._notify(self._on_complete, run)
                    return
                if run.status == RunStatus.FAILED:
                    self._error = RunFailedError(run)
                    await self._notify(self._on_error, self._error)
                    return

            self._interval = min(self._interval * self.backoff, self.max_interval)
            await self._sleep(self._interval)

    async def _notify(self, callback: Callable[..., Any] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            res = callback(arg)
            if inspect.isawaitable(res):
                await res
        except Exception:
            logger.exception("[Observer] Callback failed")
