"""
Pydantic data models for Flow Runner.
Defines the graph definition, per-run state and executor results shared by
the scheduler, the run stores and the status observer.
Flow Runner 的 Pydantic 数据模型。
定义了贯穿 scheduler、store、observer 各层的核心数据结构。
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for every run timestamp."""
    return datetime.now(timezone.utc)


# ======================================================================
# Graph definition
# 图定义（提交后不可变）
# ======================================================================

class NodeData(BaseModel):
    """
    Payload of a node: a display label plus an optional prompt template.
    节点载荷：显示名称 + 可选的提示词模板。

    The prompt may reference parent nodes with ``{{nodeId}}`` placeholders,
    substituted with that parent's result text at execution time.
    提示词中的 ``{{nodeId}}`` 占位符会在执行时被替换为对应父节点的结果文本。
    """
    model_config = ConfigDict(extra="allow")

    label: str = ""
    prompt: str | None = None


class FlowNode(BaseModel):
    """
    A node of the workflow graph. Identity is the id.
    工作流图中的节点，以 id 作为唯一标识。
    """
    model_config = ConfigDict(extra="allow")  # 画布坐标、节点类型等额外字段原样保留

    id: str = Field(description="Unique within a graph")
    data: NodeData = Field(default_factory=NodeData)


class FlowEdge(BaseModel):
    """
    A directed edge: ``target`` depends on ``source``.
    有向边：target 依赖 source。
    """
    model_config = ConfigDict(extra="allow")

    id: str
    source: str = Field(description="Parent node ID")   # 起点节点 ID
    target: str = Field(description="Child node ID")    # 终点节点 ID


class Graph(BaseModel):
    """
    Static node/edge definition submitted for execution.
    提交执行的静态图定义。两个字段都必须提供。
    """
    nodes: list[FlowNode]
    edges: list[FlowEdge]

    def get_node(self, node_id: str) -> FlowNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


# ======================================================================
# Run state
# 运行状态模型
# ======================================================================

class NodeStatus(str, Enum):
    """
    Node lifecycle states within one run, enforced by NodeStateMachine.
    单次运行中节点的生命周期状态，由 NodeStateMachine 强制合法转移。

    Transition graph:
    转移图：
        PENDING -> RUNNING -> SUCCESS
                           -> FAILED
        PENDING -> FAILED              (parent failed / 父节点失败级联)
    """
    PENDING = "pending"   # 等待父节点完成
    RUNNING = "running"   # 执行器正在运行
    SUCCESS = "success"   # 成功（终态）
    FAILED = "failed"     # 失败（终态）


TERMINAL_NODE_STATUSES = frozenset({NodeStatus.SUCCESS, NodeStatus.FAILED})


class RunStatus(str, Enum):
    """
    Overall run status.
    整体运行状态。
    """
    RUNNING = "running"
    COMPLETED = "completed"  # 所有节点都到达终态（含级联失败）
    FAILED = "failed"        # 存在未执行节点或调度异常


class RunNodeState(BaseModel):
    """
    Per-node record inside a run.
    运行记录中单个节点的状态。

    Invariants: PENDING iff both timestamps are unset; SUCCESS/FAILED iff
    ``end_time`` is set; ``result`` only on SUCCESS; ``error`` only on FAILED.
    """
    id: str
    label: str = ""
    status: NodeStatus = NodeStatus.PENDING
    start_time: datetime | None = None
    end_time: datetime | None = None
    result: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_NODE_STATUSES


class Run(BaseModel):
    """
    One execution instance of a Graph, with its own per-node state.
    图的一次执行实例，持有独立的逐节点状态。

    Only the scheduler writes to a run while it executes; the run store owns
    the persisted record; callers receive read-only snapshots.
    执行期间仅由 Scheduler 写入；持久化记录归 RunStore 所有；调用方只拿到快照。
    """
    run_id: str
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    status: RunStatus = RunStatus.RUNNING
    error: str | None = None
    nodes: dict[str, RunNodeState] = Field(default_factory=dict)  # node_id -> 状态，保持图中的节点顺序
    edges: list[FlowEdge] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    def count(self, status: NodeStatus) -> int:
        return sum(1 for n in self.nodes.values() if n.status == status)

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. ``Run[run-1 running: 2 success, 1 pending]``.
        生成单行状态摘要，用于日志输出。
        """
        counts: dict[str, int] = {}
        for n in self.nodes.values():
            counts[n.status.value] = counts.get(n.status.value, 0) + 1
        parts = [f"{v} {k}" for k, v in counts.items()]
        return f"Run[{self.run_id} {self.status.value}: {', '.join(parts)}]"


class RunHandle(BaseModel):
    """
    Returned by submission before execution finishes.
    提交后立即返回的句柄，执行结果需通过 RunStore 观察。
    """
    run_id: str
    status: RunStatus = RunStatus.RUNNING


# ======================================================================
# Executor results
# 执行器结果
# ======================================================================

class NodeOutcome(BaseModel):
    """
    Result of executing (or cascading) a single node.
    单个节点执行（或级联失败）后的结果。
    """
    success: bool
    result: str | None = None
    error: str | None = None
    failed_origin: str | None = Field(
        default=None,
        description="For cascaded failures: the node whose own execution failed",  # 级联失败的源头节点
    )
