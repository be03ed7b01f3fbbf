"""
Dependency Scheduler - runs a Graph with memoized depth-first activation.
依赖调度器 —— 以带记忆的深度优先激活方式执行 Graph。

Instead of a fixed topological order or a worker pool, every root node is
activated concurrently and each activation:
不使用固定的拓扑顺序或工作池，而是并发激活所有根节点，每次激活：

  1. Returns the memoized outcome if this node was already activated
     (diamond dependencies execute exactly once)
  2. Activates all parents concurrently and waits for their outcomes
  3. If any parent failed, records this node FAILED without running it
  4. Otherwise runs the Node Executor with the parents' outcomes
  5. Publishes the outcome, then activates every child concurrently

  1. 若节点已被激活，直接返回记忆的结果（菱形依赖只执行一次）
  2. 并发激活所有父节点并等待其结果
  3. 任一父节点失败，则直接将本节点标记为 FAILED，不调用执行器
  4. 否则携带父节点结果调用节点执行器
  5. 发布结果后，并发激活所有子节点

Submission is fire-and-forget: execute() validates the graph, creates the
run record and returns a RunHandle while the walk continues as a background
asyncio task. The walk's only observable effect is writes to the RunStore;
node and run failures never propagate back to the submitter.
提交即返回：execute() 校验图、创建运行记录后立即返回 RunHandle，
实际执行在后台 asyncio 任务中继续。执行过程唯一的可观察效果是对 RunStore 的写入，
节点失败和运行失败都不会以异常形式抛回给提交方。
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable

import config
from dag.graph import children_of, descendants_of, parents_of, root_nodes, validate_graph
from dag.state_machine import NodeStateMachine
from executors.base import NodeExecutor
from schema import FlowNode, Graph, NodeOutcome, NodeStatus, Run, RunHandle, RunStatus, utcnow
from store.base import RunNotFoundError, RunStore

logger = logging.getLogger(__name__)


class IncompleteRunError(RuntimeError):
    """
    Raised inside a walk when some nodes never reached a terminal status.
    当部分节点始终未到达终态时（例如无法从根节点到达），在执行过程内部抛出。
    """
    pass


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


async def _gather_settled(aws) -> list[Any]:
    """
    Await every awaitable, then re-raise the first exception, if any.
    Unlike a plain gather, sibling branches are never left running.
    等待所有分支结束后再抛出第一个异常，不会遗留仍在运行的兄弟分支。
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for res in results:
        if isinstance(res, BaseException):
            raise res
    return results


def _consume_exception(fut: asyncio.Future) -> None:
    # 无下游等待时也要取走异常，避免 "Future exception was never retrieved"
    if not fut.cancelled():
        fut.exception()


class _RunWalk:
    """
    State of a single run's walk: the memo table of per-node outcome futures
    and the node state machine. Scoped to one run, discarded afterwards.
    单次运行的执行状态：节点结果 Future 的记忆表 + 节点状态机。仅属于一次运行，结束即丢弃。
    """

    def __init__(
        self,
        graph: Graph,
        run_id: str,
        store: RunStore,
        executor: NodeExecutor,
        emit: Callable[[str, Any], None],
    ):
        self._graph = graph
        self._run_id = run_id
        self._store = store
        self._executor = executor
        self._emit = emit
        self._index: dict[str, FlowNode] = {n.id: n for n in graph.nodes}
        # node_id -> 已结算结果的 Future；同一节点的所有下游共享这一个 Future
        self._outcomes: dict[str, asyncio.Future[NodeOutcome]] = {}
        self._sm = NodeStateMachine(list(self._index), on_transition=self._on_transition)
        self.executed: list[str] = []  # 执行器实际被调用的节点，按调用顺序

    @property
    def settled_count(self) -> int:
        return self._sm.terminal_count()

    async def start(self) -> None:
        roots = root_nodes(self._graph)
        logger.info(
            "[Scheduler] %s: starting %d root(s): %s",
            self._run_id, len(roots), ", ".join(n.id for n in roots),
        )
        await _gather_settled([self.activate(n.id) for n in roots])

    # ------------------------------------------------------------------
    # Memoized activation
    # 带记忆的节点激活
    # ------------------------------------------------------------------

    async def activate(self, node_id: str) -> NodeOutcome:
        fut = self._outcomes.get(node_id)
        if fut is not None:
            return await fut

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume_exception)
        self._outcomes[node_id] = fut
        try:
            outcome = await self._settle(node_id)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as exc:
            fut.set_exception(exc)
            raise
        fut.set_result(outcome)

        # The outcome is published before fanning out, so children that wait
        # on this node find it settled.
        # 先发布结果再激活子节点，子节点等待本节点时可直接拿到结果。
        children = children_of(self._graph, node_id)
        if children:
            await _gather_settled([self.activate(c.id) for c in children])
        return outcome

    async def _settle(self, node_id: str) -> NodeOutcome:
        node = self._index[node_id]
        parents = parents_of(self._graph, node_id)
        outcomes = await _gather_settled([self.activate(p.id) for p in parents])

        parent_results: dict[str, NodeOutcome] = {}
        for parent, outcome in zip(parents, outcomes):
            if not outcome.success:
                return await self._cascade(node, parent.id, outcome)
            parent_results[parent.id] = outcome

        return await self._execute(node, parent_results)

    # ------------------------------------------------------------------
    # Node transitions
    # 节点状态转移（先经状态机校验，再写入 RunStore）
    # ------------------------------------------------------------------

    async def _cascade(self, node: FlowNode, parent_id: str, parent_outcome: NodeOutcome) -> NodeOutcome:
        origin = parent_outcome.failed_origin or parent_id
        error = f"Parent node {parent_id} failed"
        if origin != parent_id:
            error += f" (caused by {origin})"

        self._sm.transition(node.id, NodeStatus.FAILED)
        await self._store.update_node(
            self._run_id, node.id,
            status=NodeStatus.FAILED, error=error, end_time=utcnow(),
        )
        logger.info("[Scheduler] %s: %s skipped, %s", self._run_id, node.id, error)
        return NodeOutcome(success=False, error=error, failed_origin=origin)

    async def _execute(self, node: FlowNode, parent_results: dict[str, NodeOutcome]) -> NodeOutcome:
        self._sm.transition(node.id, NodeStatus.RUNNING)
        await self._store.update_node(
            self._run_id, node.id,
            status=NodeStatus.RUNNING, start_time=utcnow(),
        )
        self.executed.append(node.id)

        try:
            outcome = await self._executor.execute_node(node, parent_results)
            if not isinstance(outcome, NodeOutcome):
                outcome = NodeOutcome.model_validate(outcome)
        except Exception as exc:
            # 执行器抛出的异常按节点失败记录，不向上传播
            logger.warning("[Scheduler] %s: executor raised on %s: %r", self._run_id, node.id, exc)
            outcome = NodeOutcome(success=False, error=str(exc) or exc.__class__.__name__)

        if outcome.success:
            self._sm.transition(node.id, NodeStatus.SUCCESS)
            await self._store.update_node(
                self._run_id, node.id,
                status=NodeStatus.SUCCESS, result=outcome.result, end_time=utcnow(),
            )
            return outcome

        error = outcome.error or "Node execution failed"
        self._sm.transition(node.id, NodeStatus.FAILED)
        await self._store.update_node(
            self._run_id, node.id,
            status=NodeStatus.FAILED, error=error, end_time=utcnow(),
        )
        skipped = descendants_of(self._graph, node.id)
        logger.info(
            "[Scheduler] %s: %s failed: %s; descendants to skip: %s",
            self._run_id, node.id, error, ", ".join(skipped) or "none",
        )
        return NodeOutcome(success=False, error=error)

    def _on_transition(self, node_id: str, old: NodeStatus, new: NodeStatus) -> None:
        self._emit("node_transition", {
            "run_id": self._run_id,
            "node_id": node_id,
            "from": old.value,
            "to": new.value,
        })


class DependencyScheduler:
    """
    Drives runs of Graphs against a NodeExecutor, recording progress in a
    RunStore. One scheduler may run many graphs concurrently.
    驱动 Graph 的执行：调用 NodeExecutor，并把进度写入 RunStore。
    同一个调度器可以并发执行多个图。

    Events (``on_event(event, data)``):
      - run_started:     {"run_id", "nodes"}
      - node_transition: {"run_id", "node_id", "from", "to"}
      - run_finished:    {"run_id", "run"}
    """

    def __init__(
        self,
        store: RunStore,
        executor: NodeExecutor,
        reject_cycles: bool | None = None,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self._store = store
        self._executor = executor
        self._reject_cycles = config.REJECT_CYCLES if reject_cycles is None else reject_cycles
        self._on_event = on_event
        self._tasks: dict[str, asyncio.Task[None]] = {}  # run_id -> 后台执行任务

    @property
    def store(self) -> RunStore:
        return self._store

    @property
    def active_runs(self) -> list[str]:
        return [rid for rid, t in self._tasks.items() if not t.done()]

    # ------------------------------------------------------------------
    # Submission
    # 提交
    # ------------------------------------------------------------------

    async def execute(self, graph: Graph) -> RunHandle:
        """
        Validate ``graph``, create its run and start executing it in the
        background. Returns as soon as the run record exists.
        校验图、创建运行记录并在后台开始执行；运行记录创建后立即返回。

        Raises:
            GraphValidationError: malformed graph; no run is created.
        """
        validate_graph(graph, reject_cycles=self._reject_cycles)

        run_id = new_run_id()
        run = await self._store.create_run(run_id, graph)
        self._emit("run_started", {"run_id": run_id, "nodes": list(run.nodes)})

        task = asyncio.create_task(self._execute_run(graph, run_id), name=f"flow-{run_id}")
        self._tasks[run_id] = task
        task.add_done_callback(lambda _t, rid=run_id: self._tasks.pop(rid, None))
        return RunHandle(run_id=run_id, status=run.status)

    async def run(self, graph: Graph) -> Run:
        """
        Submit and wait for the run to reach a terminal status.
        提交并等待运行到达终态，返回最终快照。
        """
        handle = await self.execute(graph)
        run = await self.wait(handle.run_id)
        if run is None:
            # 运行期间记录已被删除
            raise RunNotFoundError(handle.run_id)
        return run

    async def wait(self, run_id: str) -> Run | None:
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return await self._store.get_run(run_id)

    async def shutdown(self) -> None:
        """Wait for every in-flight run."""
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Background walk
    # 后台执行
    # ------------------------------------------------------------------

    async def _execute_run(self, graph: Graph, run_id: str) -> None:
        walk = _RunWalk(graph, run_id, self._store, self._executor, self._emit)
        try:
            await walk.start()
            total = len(graph.nodes)
            settled = walk.settled_count
            if settled != total:
                raise IncompleteRunError(f"Not all nodes were executed ({settled}/{total})")
            await self._store.update_run(run_id, status=RunStatus.COMPLETED, end_time=utcnow())
        except IncompleteRunError as exc:
            logger.warning("[Scheduler] %s failed: %s", run_id, exc)
            await self._store.update_run(run_id, status=RunStatus.FAILED, error=str(exc), end_time=utcnow())
        except Exception as exc:
            logger.exception("[Scheduler] %s aborted", run_id)
            await self._store.update_run(
                run_id, status=RunStatus.FAILED, error=str(exc) or exc.__class__.__name__, end_time=utcnow(),
            )

        final = await self._store.get_run(run_id)
        if final is None:
            logger.info("[Scheduler] %s finished after its record was deleted", run_id)
            return
        logger.info("[Scheduler] %s", final.summary())
        self._emit("run_finished", {"run_id": run_id, "run": final})

    def _emit(self, event: str, data: Any) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event, data)
        except Exception:
            logger.exception("[Scheduler] on_event callback failed for %s", event)
