"""
Node State Machine - Validates and enforces node lifecycle transitions.
节点状态机 —— 校验并强制执行节点生命周期的合法状态转移。

The transition table is the single source of truth for what state changes
are legal. Any invalid transition raises InvalidTransitionError, so a run
can never record a node finishing twice or running after it failed.
转移表是合法状态变化的唯一权威来源。
任何非法转移都会抛出 InvalidTransitionError，保证节点不会重复结束或失败后再运行。

Transition graph:
转移图：
    PENDING ──> RUNNING ──> SUCCESS   (happy path / 正常路径)
                        ──> FAILED    (executor failure / 执行失败)
    PENDING ──────────────> FAILED    (parent failed / 父节点失败级联)
"""

from __future__ import annotations

import logging
from typing import Callable

from schema import NodeStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """
    Raised when an illegal state transition is attempted.
    当尝试非法状态转移时抛出此异常。
    """
    pass


VALID_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.PENDING: {NodeStatus.RUNNING, NodeStatus.FAILED},
    NodeStatus.RUNNING: {NodeStatus.SUCCESS, NodeStatus.FAILED},
    # Terminal states — no further transitions allowed
    # 终态——不允许任何进一步转移
    NodeStatus.SUCCESS: set(),
    NodeStatus.FAILED: set(),
}


class NodeStateMachine:
    """
    Validates and records node state transitions for one run.
    校验并记录单次运行内的节点状态转移。

    The machine keeps its own view of every node's status, so the scheduler
    can check a transition before it is written to the run store.
    状态机维护每个节点的当前状态视图，Scheduler 在写入 RunStore 之前先经它校验。
    """

    def __init__(
        self,
        node_ids: list[str] | None = None,
        on_transition: Callable[[str, NodeStatus, NodeStatus], None] | None = None,
    ):
        """
        Args:
            node_ids: Nodes to track, all starting PENDING.
            on_transition: Optional callback(node_id, old_status, new_status).
            on_transition: 可选回调 callback(node_id, 旧状态, 新状态)，用于事件通知。
        """
        self._status: dict[str, NodeStatus] = {nid: NodeStatus.PENDING for nid in node_ids or []}
        self._on_transition = on_transition

    def status_of(self, node_id: str) -> NodeStatus:
        return self._status.get(node_id, NodeStatus.PENDING)

    def can_transition(self, node_id: str, new_status: NodeStatus) -> bool:
        """
        Check whether moving ``node_id`` to ``new_status`` is legal.
        检查将 ``node_id`` 转移到 ``new_status`` 是否合法。
        """
        return new_status in VALID_TRANSITIONS.get(self.status_of(node_id), set())

    def transition(self, node_id: str, new_status: NodeStatus) -> NodeStatus:
        """
        Apply a state transition and return the previous status.
        Raises InvalidTransitionError if illegal.
        应用状态转移并返回旧状态。若转移非法则抛出 InvalidTransitionError。
        """
        old_status = self.status_of(node_id)
        if not self.can_transition(node_id, new_status):
            raise InvalidTransitionError(
                f"Node '{node_id}': cannot transition from {old_status.value} to {new_status.value}. "
                f"Valid targets: {sorted(s.value for s in VALID_TRANSITIONS.get(old_status, set()))}"
            )

        self._status[node_id] = new_status
        logger.debug("[SM] %s: %s -> %s", node_id, old_status.value, new_status.value)

        if self._on_transition:
            try:
                self._on_transition(node_id, old_status, new_status)
            except Exception:
                logger.exception("[SM] on_transition callback failed for %s", node_id)
        return old_status

    def terminal_count(self) -> int:
        return sum(1 for s in self._status.values() if s in (NodeStatus.SUCCESS, NodeStatus.FAILED))
