"""
Graph Model - structural queries and submission-time validation.
图模型 —— 结构查询与提交时校验。

A Graph is an immutable list of nodes plus a list of directed edges
(``target`` depends on ``source``). Everything here is pure: the functions
never mutate the graph and never touch run state.
Graph 由节点列表和有向边列表组成（target 依赖 source）。
本模块全部为纯函数：既不修改图，也不接触运行状态。

Key operations:
  - parents_of() / children_of(): direct neighbours in edge-list order
  - root_nodes(): nodes that no edge targets
  - topological_sort(): Kahn's algorithm, used for cycle detection
  - validate_graph(): reject malformed graphs before a run is created

核心操作：
  - parents_of() / children_of(): 按边列表顺序返回直接父/子节点
  - root_nodes():                 没有入边的根节点
  - topological_sort():           Kahn 算法，用于环检测
  - validate_graph():             在创建运行记录之前拒绝不合法的图
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from pydantic import ValidationError

from schema import FlowNode, Graph

logger = logging.getLogger(__name__)


class GraphValidationError(ValueError):
    """
    Raised when a submitted graph is malformed. No run is created.
    提交的图不合法时抛出，此时不会创建任何运行记录。
    """
    pass


# ------------------------------------------------------------------
# Node queries
# 节点查询
# ------------------------------------------------------------------

def _node_index(graph: Graph) -> dict[str, FlowNode]:
    return {n.id: n for n in graph.nodes}


def parents_of(graph: Graph, node_id: str) -> list[FlowNode]:
    """
    Nodes with an edge whose target is ``node_id``, in edge-list order.
    返回所有指向 ``node_id`` 的边的源节点（按边列表顺序）。
    """
    index = _node_index(graph)
    return [index[e.source] for e in graph.edges if e.target == node_id and e.source in index]


def children_of(graph: Graph, node_id: str) -> list[FlowNode]:
    """
    Nodes with an edge whose source is ``node_id``, in edge-list order.
    返回 ``node_id`` 出边的所有目标节点（按边列表顺序）。
    """
    index = _node_index(graph)
    return [index[e.target] for e in graph.edges if e.source == node_id and e.target in index]


def root_nodes(graph: Graph) -> list[FlowNode]:
    """
    Nodes that appear as no edge's target; eligible to start immediately.
    没有任何入边的节点，可以立即开始执行。
    """
    targets = {e.target for e in graph.edges}
    return [n for n in graph.nodes if n.id not in targets]


def descendants_of(graph: Graph, node_id: str) -> list[str]:
    """
    Return all node IDs downstream of ``node_id`` via BFS.
    通过 BFS 返回 ``node_id`` 的所有下游节点 ID。
    """
    visited: set[str] = set()
    order: list[str] = []
    queue: deque[str] = deque(e.target for e in graph.edges if e.source == node_id)

    while queue:
        nid = queue.popleft()
        if nid in visited:
            continue
        visited.add(nid)
        order.append(nid)
        queue.extend(e.target for e in graph.edges if e.source == nid)

    return order


# ------------------------------------------------------------------
# Graph algorithms
# 图算法
# ------------------------------------------------------------------

def topological_sort(graph: Graph) -> list[str]:
    """
    Kahn's algorithm — returns node IDs in a valid execution order.
    Nodes on a cycle never reach in-degree zero and are left out, so a
    result shorter than the node list means the graph has a cycle.

    Kahn 算法 —— 返回节点 ID 的合法拓扑顺序。
    环上的节点入度永远不会降为 0，因此结果长度小于节点数即说明存在环。
    """
    in_degree: dict[str, int] = {n.id: 0 for n in graph.nodes}
    for e in graph.edges:
        if e.target in in_degree:
            in_degree[e.target] += 1

    queue = deque(nid for nid, deg in in_degree.items() if deg == 0)
    result: list[str] = []

    while queue:
        nid = queue.popleft()
        result.append(nid)
        for e in graph.edges:
            if e.source == nid and e.target in in_degree:
                in_degree[e.target] -= 1
                if in_degree[e.target] == 0:
                    queue.append(e.target)

    return result


def find_cycle_nodes(graph: Graph) -> list[str]:
    """Node IDs left out of the topological order (on or behind a cycle)."""
    ordered = set(topological_sort(graph))
    return [n.id for n in graph.nodes if n.id not in ordered]


# ------------------------------------------------------------------
# Validation
# 校验
# ------------------------------------------------------------------

def validate_graph(graph: Graph, reject_cycles: bool = True) -> None:
    """
    Reject graphs the scheduler cannot run.
    拒绝调度器无法执行的图：

      - duplicate node ids / 节点 ID 重复
      - edges referencing an absent node / 边引用了不存在的节点
      - cycles, unless ``reject_cycles`` is False / 存在环（可通过 reject_cycles 关闭）
    """
    seen: set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            raise GraphValidationError(f"Duplicate node id '{node.id}'")
        seen.add(node.id)

    for e in graph.edges:
        if e.source not in seen:
            raise GraphValidationError(f"Edge '{e.id}' source '{e.source}' not found in nodes")
        if e.target not in seen:
            raise GraphValidationError(f"Edge '{e.id}' target '{e.target}' not found in nodes")

    if reject_cycles:
        cyclic = find_cycle_nodes(graph)
        if cyclic:
            raise GraphValidationError(f"Graph contains a cycle through: {', '.join(cyclic)}")
    elif find_cycle_nodes(graph):
        logger.warning("[Graph] Cycle accepted (reject_cycles=False); affected nodes will never run")


def parse_graph(payload: Graph | dict[str, Any]) -> Graph:
    """
    Build a Graph from a submitted payload.
    从提交的载荷构建 Graph；缺少 nodes 或 edges 时抛出 GraphValidationError。
    """
    if isinstance(payload, Graph):
        return payload
    if not isinstance(payload, dict):
        raise GraphValidationError("Invalid workflow format")
    if payload.get("nodes") is None or payload.get("edges") is None:
        raise GraphValidationError("Invalid workflow format: 'nodes' and 'edges' are required")
    try:
        return Graph.model_validate(payload)
    except ValidationError as exc:
        raise GraphValidationError(f"Invalid workflow format: {exc}") from exc
