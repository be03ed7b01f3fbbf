"""
Workflow Service - the boundary operations of the engine.
工作流服务 —— 引擎对外的边界操作。

Wires a RunStore, a NodeExecutor and a DependencyScheduler together and
exposes what a transport (REST handler, websocket, CLI) needs:
把 RunStore、NodeExecutor 和 DependencyScheduler 组装在一起，对外提供传输层所需的操作：

  - submit():     validate a graph payload and start a run / 校验图并启动运行
  - get_status(): current Run record / 查询当前运行记录
  - delete_run(): remove a run record / 删除运行记录
  - sweep():      retention cleanup, triggered externally / 过期清理（由外部周期触发）
  - observer():   a StatusObserver bound to this store / 绑定本存储的状态轮询器

Not-found is signalled with RunNotFoundError and malformed graphs with
GraphValidationError; a transport maps them to 404 / 400.
不存在的 run 以 RunNotFoundError 表示，不合法的图以 GraphValidationError 表示，
传输层可分别映射为 404 / 400。
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable

import config
from dag.graph import parse_graph
from dag.scheduler import DependencyScheduler
from executors.base import NodeExecutor
from executors.simulated import SimulatedNodeExecutor
from observer.poller import StatusObserver, store_fetcher
from schema import Graph, Run, RunHandle
from store.base import RunNotFoundError, RunStore
from store.memory import InMemoryRunStore

logger = logging.getLogger(__name__)


class WorkflowService:
    """
    Facade over the scheduler and the run store.
    调度器与运行记录存储的门面。

    Either pass a ready ``scheduler`` (its store is reused) or the parts to
    build one from; combining both raises ValueError.
    """

    def __init__(
        self,
        store: RunStore | None = None,
        executor: NodeExecutor | None = None,
        scheduler: DependencyScheduler | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        if scheduler is not None:
            if store is not None or executor is not None or on_event is not None:
                # scheduler 已自带 store/executor/on_event，不能再单独指定
                raise ValueError("Pass either a scheduler or store/executor/on_event, not both")
            self.store = scheduler.store
            self.scheduler = scheduler
        else:
            self.store = store or InMemoryRunStore()
            self.scheduler = DependencyScheduler(
                store=self.store,
                executor=executor or SimulatedNodeExecutor(),
                on_event=on_event,
            )

    async def submit(self, payload: Graph | dict[str, Any]) -> RunHandle:
        """
        Start a run. Raises GraphValidationError before any run is created
        when ``nodes``/``edges`` are missing or the graph is malformed.
        启动一次运行；图缺失字段或不合法时在创建运行记录之前抛出 GraphValidationError。
        """
        graph = parse_graph(payload)
        handle = await self.scheduler.execute(graph)
        logger.info("[Service] Submitted %s (%d nodes, %d edges)", handle.run_id, len(graph.nodes), len(graph.edges))
        return handle

    async def get_status(self, run_id: str) -> Run:
        run = await self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def wait(self, run_id: str) -> Run:
        """Await an in-process run and return its terminal snapshot."""
        run = await self.scheduler.wait(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def delete_run(self, run_id: str) -> None:
        """
        Remove a run record. An in-flight walk keeps running; its later
        writes become no-ops.
        删除运行记录；仍在执行的任务不会被停止，其后续写入将被忽略。
        """
        if not await self.store.delete_run(run_id):
            raise RunNotFoundError(run_id)

    async def list_runs(self) -> list[Run]:
        return await self.store.list_runs()

    async def sweep(self, max_age: float | timedelta | None = None) -> int:
        return await self.store.cleanup(config.RUN_RETENTION_SECONDS if max_age is None else max_age)

    def observer(self, **kwargs: Any) -> StatusObserver:
        return StatusObserver(store_fetcher(self.store), **kwargs)

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
