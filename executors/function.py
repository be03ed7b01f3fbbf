"""
Function Node Executor - adapt a plain callable to the executor contract.
函数节点执行器 —— 将普通函数适配为执行器接口。

The callable receives ``(node, prompt, parent_results)`` where ``prompt`` is
the already-rendered template (or None). It may be sync or async and may
return a NodeOutcome, a string (success result), a bool, or raise.
函数接收 ``(node, prompt, parent_results)``，prompt 为渲染后的模板（可能为 None）。
函数可以是同步或异步的，可返回 NodeOutcome、字符串（成功结果）、布尔值，或直接抛出异常。
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

from executors.base import render_prompt
from schema import FlowNode, NodeOutcome


class FunctionNodeExecutor:
    """Wraps a sync or async callable."""

    def __init__(self, fn: Callable[..., Any]):
        self._fn = fn

    async def execute_node(
        self,
        node: FlowNode,
        parent_results: dict[str, NodeOutcome],
    ) -> NodeOutcome:
        prompt = node.data.prompt
        if prompt:
            prompt = render_prompt(prompt, parent_results)

        res = self._fn(node, prompt, parent_results)
        if inspect.isawaitable(res):
            res = await res

        if isinstance(res, NodeOutcome):
            return res
        if isinstance(res, bool):
            return NodeOutcome(success=True) if res else NodeOutcome(success=False, error="Node reported failure")
        if res is None:
            return NodeOutcome(success=True)
        return NodeOutcome(success=True, result=str(res))
