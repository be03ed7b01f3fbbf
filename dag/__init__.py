"""
DAG module - Core engine for workflow graph execution.
DAG 模块 —— 工作流图执行的核心引擎。

Components:
  - graph.py:         structural queries and submission-time validation
  - state_machine.py: node lifecycle state machine
  - scheduler.py:     dependency scheduler (memoized depth-first activation)

模块组成：
  - graph.py:         图结构查询与提交校验（父/子/根节点、拓扑排序、环检测）
  - state_machine.py: 节点生命周期状态机（强制合法状态转移）
  - scheduler.py:     依赖调度器（带记忆的深度优先并发激活）
"""

from dag.graph import GraphValidationError, children_of, parents_of, root_nodes, validate_graph  # 图模型
from dag.state_machine import InvalidTransitionError, NodeStateMachine  # 节点状态机
from dag.scheduler import DependencyScheduler  # 依赖调度器
