"""
Run Store - keyed storage of Run records.
运行记录存储 —— 按 run_id 存取 Run 记录。

The scheduler writes node transitions here while a run executes; status
queries and observers read snapshots from here. Every update is a whole
record read-merge-write performed under a per-run asyncio.Lock, so updates
to different nodes of the same run never lose each other's writes.
Scheduler 在执行期间把节点状态转移写入此处；状态查询和轮询器从此处读取快照。
所有更新都在每个 run 独立的 asyncio.Lock 下执行「读取-合并-写回」，
同一 run 中不同节点的并发更新不会互相覆盖。

Concrete stores only implement the four storage primitives
(_load / _save / _remove / _all); merging, locking and retention live here.
具体实现只需提供 _load / _save / _remove / _all 四个存储原语，
合并、加锁与过期清理逻辑统一在本基类中实现。
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any

from schema import Graph, Run, RunNodeState, RunStatus, utcnow

logger = logging.getLogger(__name__)


class RunNotFoundError(KeyError):
    """
    Raised at the service boundary when a run id is unknown.
    在服务边界查询/删除不存在的 run 时抛出。
    """

    def __init__(self, run_id: str):
        super().__init__(run_id)
        self.run_id = run_id

    def __str__(self) -> str:
        return f"Run not found: {self.run_id}"


def build_run(run_id: str, graph: Graph) -> Run:
    """
    Create a fresh RUNNING record with every node PENDING.
    创建新的运行记录：整体状态 RUNNING，所有节点 PENDING。
    """
    return Run(
        run_id=run_id,
        status=RunStatus.RUNNING,
        nodes={
            n.id: RunNodeState(id=n.id, label=n.data.label)
            for n in graph.nodes
        },
        edges=[e.model_copy() for e in graph.edges],
    )


def _check_fields(model: type, fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(model.model_fields)
    if unknown:
        raise ValueError(f"Unknown {model.__name__} fields: {sorted(unknown)}")


class RunStore(ABC):
    """
    Abstract run store with per-run locking.
    带每个 run 独立锁的抽象运行记录存储。
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Storage primitives
    # 存储原语（由子类实现）
    # ------------------------------------------------------------------

    @abstractmethod
    def _load(self, run_id: str) -> Run | None:
        """Return the stored record or None. Callers treat the result as private."""

    @abstractmethod
    def _save(self, run: Run) -> None:
        ...

    @abstractmethod
    def _remove(self, run_id: str) -> bool:
        ...

    @abstractmethod
    def _all(self) -> list[Run]:
        ...

    def _lock_for(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = self._locks[run_id] = asyncio.Lock()
        return lock

    def _drop_lock(self, run_id: str) -> None:
        # 对已删除 run 的迟到写入不应留下锁
        self._locks.pop(run_id, None)

    # ------------------------------------------------------------------
    # Public operations
    # 对外操作
    # ------------------------------------------------------------------

    async def create_run(self, run_id: str, graph: Graph) -> Run:
        run = build_run(run_id, graph)
        async with self._lock_for(run_id):
            if self._load(run_id) is not None:
                raise ValueError(f"Run '{run_id}' already exists")
            self._save(run)
        logger.debug("[RunStore] Created %s with %d nodes", run_id, len(run.nodes))
        return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        """
        Return a snapshot of the run, or None when absent.
        返回运行记录的快照（深拷贝）；不存在时返回 None。
        """
        run = self._load(run_id)
        return run.model_copy(deep=True) if run is not None else None

    async def list_runs(self) -> list[Run]:
        return [r.model_copy(deep=True) for r in sorted(self._all(), key=lambda r: r.start_time)]

    async def update_node(self, run_id: str, node_id: str, **fields: Any) -> Run | None:
        """
        Merge ``fields`` into one node's state. No-op (returns None) if the
        run or the node is absent, e.g. after the run was deleted mid-flight.
        将 ``fields`` 合并到指定节点状态。若 run 或节点不存在（例如执行中被删除）则什么都不做。
        """
        _check_fields(RunNodeState, fields)
        async with self._lock_for(run_id):
            run = self._load(run_id)
            if run is None:
                self._drop_lock(run_id)
            if run is None or node_id not in run.nodes:
                logger.debug("[RunStore] update_node ignored: %s/%s not found", run_id, node_id)
                return None
            node = run.nodes[node_id].model_copy(update=fields)
            updated = run.model_copy(update={"nodes": {**run.nodes, node_id: node}})
            self._save(updated)
        return updated.model_copy(deep=True)

    async def update_run(self, run_id: str, **fields: Any) -> Run | None:
        """
        Merge ``fields`` into the run-level record. No-op if the run is absent.
        将 ``fields`` 合并到 run 级字段；run 不存在时什么都不做。
        """
        _check_fields(Run, fields)
        if "nodes" in fields or "run_id" in fields:
            raise ValueError("update_run cannot replace 'nodes' or 'run_id'")
        async with self._lock_for(run_id):
            run = self._load(run_id)
            if run is None:
                self._drop_lock(run_id)
                logger.debug("[RunStore] update_run ignored: %s not found", run_id)
                return None
            updated = run.model_copy(update=fields)
            self._save(updated)
        return updated.model_copy(deep=True)

    async def delete_run(self, run_id: str) -> bool:
        async with self._lock_for(run_id):
            removed = self._remove(run_id)
        self._drop_lock(run_id)
        if removed:
            logger.info("[RunStore] Deleted %s", run_id)
        return removed

    async def cleanup(self, max_age: float | timedelta) -> int:
        """
        Remove runs whose start_time is older than ``max_age`` (seconds or
        timedelta). Returns how many were removed.
        删除 start_time 早于 ``max_age`` 的运行记录，返回删除数量。
        由外部周期性触发，调度器本身不负责安排清理。
        """
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        cutoff = utcnow() - max_age
        expired = [r.run_id for r in self._all() if r.start_time < cutoff]
        removed = 0
        for run_id in expired:
            if await self.delete_run(run_id):
                removed += 1
        if removed:
            logger.info("[RunStore] Cleanup removed %d run(s) older than %s", removed, max_age)
        return removed
