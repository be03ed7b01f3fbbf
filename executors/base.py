"""
Node Executor contract.
节点执行器接口。

The scheduler treats an executor as an opaque async operation: given a node
and its parents' outcomes, produce a NodeOutcome. Executors may take a long
time and may fail; they never touch the run store.
Scheduler 将执行器视为不透明的异步操作：输入节点及其父节点结果，输出 NodeOutcome。
执行器可能耗时较长，也可能失败；执行器本身从不访问 RunStore。
"""

from __future__ import annotations

import re
from typing import Protocol

from schema import FlowNode, NodeOutcome

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


class NodeExecutor(Protocol):
    """Protocol for node executors."""

    async def execute_node(
        self,
        node: FlowNode,
        parent_results: dict[str, NodeOutcome],
    ) -> NodeOutcome:
        """
        Execute one node.

        Args:
            node: The node definition (label + prompt template)
            parent_results: Outcome of every parent, keyed by parent node id

        Returns:
            NodeOutcome with success + result, or failure + error
        """
        ...


def render_prompt(template: str, parent_results: dict[str, NodeOutcome]) -> str:
    """
    Substitute ``{{parentId}}`` placeholders with that parent's result text.
    Placeholders naming a node that is not a parent are left untouched.

    将 ``{{parentId}}`` 占位符替换为对应父节点的结果文本；
    非父节点的占位符保持原样。
    """
    def _sub(match: re.Match[str]) -> str:
        parent_id = match.group(1)
        if parent_id not in parent_results:
            return match.group(0)
        return parent_results[parent_id].result or ""

    return _PLACEHOLDER.sub(_sub, template)
