"""
Simulated Node Executor - randomized latency and randomized failure.
模拟节点执行器 —— 随机耗时 + 随机失败。

Stands in for real work: the rendered prompt is the unit of work, and the
"result" simply echoes it back. Useful for demos and for exercising the
scheduler's failure paths.
代替真实任务：渲染后的提示词即为工作单元，结果只是原样回显。
适用于演示以及验证调度器的失败路径。
"""

from __future__ import annotations

import asyncio
import logging
import random

import config
from executors.base import render_prompt
from schema import FlowNode, NodeOutcome

logger = logging.getLogger(__name__)


class SimulatedNodeExecutor:
    """
    Sleeps a random delay, then succeeds or fails at random.
    随机等待一段时间后，按概率成功或失败。
    """

    def __init__(
        self,
        min_delay: float | None = None,
        max_delay: float | None = None,
        failure_rate: float | None = None,
        rng: random.Random | None = None,
    ):
        self.min_delay = config.NODE_MIN_DELAY if min_delay is None else min_delay
        self.max_delay = config.NODE_MAX_DELAY if max_delay is None else max_delay
        self.failure_rate = config.NODE_FAILURE_RATE if failure_rate is None else failure_rate
        if self.min_delay < 0 or self.max_delay < self.min_delay:
            raise ValueError(f"Invalid delay range: {self.min_delay}..{self.max_delay}")
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be within [0, 1], got {self.failure_rate}")
        self._rng = rng or random.Random()

    async def execute_node(
        self,
        node: FlowNode,
        parent_results: dict[str, NodeOutcome],
    ) -> NodeOutcome:
        delay = self._rng.uniform(self.min_delay, self.max_delay)
        await asyncio.sleep(delay)

        prompt = node.data.prompt
        if not prompt:
            return NodeOutcome(success=True, result="Node executed without prompt")

        processed = render_prompt(prompt, parent_results)
        if self._rng.random() < self.failure_rate:
            logger.debug("[Simulated] %s failed after %.2fs", node.id, delay)
            return NodeOutcome(success=False, error="Random execution failure")

        return NodeOutcome(success=True, result=f"Processed: {processed}")
