"""
Flow Runner - command line entry point.
Flow Runner —— 命令行入口。

Loads a graph (JSON file with ``nodes`` and ``edges``), submits it to the
workflow service and follows the run with a StatusObserver, printing each
node transition and a final table of node states with rich.
加载图定义（包含 ``nodes`` 与 ``edges`` 的 JSON 文件），提交给工作流服务，
并通过 StatusObserver 跟踪运行，使用 Rich 打印每次节点状态转移及最终的节点状态表。

Usage:
    python main.py [graph.json] [-v] [--fast] [--fail-rate=0.1] [--store=memory|file] [--sweep]
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

import config
from dag.graph import GraphValidationError, topological_sort
from executors.simulated import SimulatedNodeExecutor
from schema import Graph, Run, RunStatus
from service import WorkflowService
from store.file import JsonFileRunStore
from store.memory import InMemoryRunStore

console = Console()

# Status -> Rich style mapping
# 节点/运行状态 -> Rich 样式映射
_STATUS_STYLES = {
    "pending": "dim",
    "running": "bold yellow",
    "success": "green",
    "failed": "red",
    "completed": "bold green",
}

# Built-in demo: a diamond (a -> b, a -> c, b/c -> d) plus an independent root.
# 内置演示图：菱形依赖 + 一个独立根节点
DEMO_GRAPH: dict[str, Any] = {
    "nodes": [
        {"id": "a", "data": {"label": "Outline", "prompt": "Outline a short article about DAGs"}},
        {"id": "b", "data": {"label": "Draft intro", "prompt": "Write an intro from {{a}}"}},
        {"id": "c", "data": {"label": "Draft body", "prompt": "Write the body from {{a}}"}},
        {"id": "d", "data": {"label": "Merge", "prompt": "Merge {{b}} with {{c}}"}},
        {"id": "e", "data": {"label": "Standalone"}},
    ],
    "edges": [
        {"id": "e-a-b", "source": "a", "target": "b"},
        {"id": "e-a-c", "source": "a", "target": "c"},
        {"id": "e-b-d", "source": "b", "target": "d"},
        {"id": "e-c-d", "source": "c", "target": "d"},
    ],
}


# ======================================================================
# UI Event Handler
# UI 事件处理器
# ======================================================================

def on_event(event: str, data: Any) -> None:
    """
    Print scheduler events.
    打印调度器事件。
    """
    if event == "run_started":
        console.print(f"[bold cyan]>>> Run {data['run_id']} started[/bold cyan] ({len(data['nodes'])} nodes)")

    elif event == "node_transition":
        style = _STATUS_STYLES.get(data["to"], "white")
        console.print(f"    [{style}]{data['node_id']}: {data['from']} -> {data['to']}[/{style}]")

    elif event == "run_finished":
        run: Run = data["run"]
        console.print(f"[dim]{run.summary()}[/dim]")


def _build_run_table(run: Run) -> Table:
    table = Table(title=f"{run.run_id} ({run.status.value})")
    table.add_column("Node", style="cyan")
    table.add_column("Label")
    table.add_column("Status")
    table.add_column("Result / Error", overflow="fold")

    for node in run.nodes.values():
        style = _STATUS_STYLES.get(node.status.value, "white")
        detail = node.result if node.result is not None else (node.error or "")
        table.add_row(node.id, node.label, f"[{style}]{node.status.value}[/{style}]", detail[:200])
    return table


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统；verbose=True 时启用 DEBUG 级别。
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def _option(name: str, default: str | None = None) -> str | None:
    prefix = f"--{name}="
    for arg in sys.argv[1:]:
        if arg.startswith(prefix):
            return arg[len(prefix):]
    return default


def load_graph(path: str | None) -> dict[str, Any]:
    if path is None:
        return DEMO_GRAPH
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def run_graph(payload: dict[str, Any], fast: bool, failure_rate: float | None, store_kind: str) -> Run | None:
    """
    Submit one graph and follow it until it is terminal.
    提交单个图并跟踪直到终态。
    """
    store = JsonFileRunStore() if store_kind == "file" else InMemoryRunStore()
    executor = SimulatedNodeExecutor(
        min_delay=0.1 if fast else None,
        max_delay=0.4 if fast else None,
        failure_rate=failure_rate,
    )
    service = WorkflowService(store=store, executor=executor, on_event=on_event)

    handle = await service.submit(payload)
    graph = Graph.model_validate(payload)
    console.print(f"[dim]Execution order (one valid topological order): {' -> '.join(topological_sort(graph))}[/dim]")

    observer = service.observer(
        initial_delay=0.1 if fast else None,
        initial_interval=0.2 if fast else None,
        on_error=lambda exc: console.print(f"[red]Observer: {exc}[/red]"),
    )
    observer.watch(handle.run_id)
    run = await observer.wait()
    await service.shutdown()

    if run is not None:
        console.print(_build_run_table(run))
        if run.error:
            console.print(Panel(run.error, title="Run error", border_style="red"))
    return run


async def sweep(store_kind: str) -> None:
    store = JsonFileRunStore() if store_kind == "file" else InMemoryRunStore()
    removed = await WorkflowService(store=store).sweep()
    console.print(f"Removed {removed} run(s) older than {config.RUN_RETENTION_SECONDS:.0f}s")


def main() -> None:
    """
    程序入口：
    - 位置参数：图定义 JSON 文件路径（缺省时运行内置演示图）
    - -v / --verbose：启用调试日志
    - --fast：缩短模拟执行耗时
    - --fail-rate=0.1：模拟执行失败概率
    - --store=memory|file：运行记录存储方式
    - --sweep：只执行一次过期清理
    """
    verbose = "--verbose" in sys.argv or "-v" in sys.argv
    setup_logging(verbose)
    store_kind = _option("store", "memory")

    if "--sweep" in sys.argv:
        asyncio.run(sweep(store_kind))
        return

    args = [a for a in sys.argv[1:] if not a.startswith("-")]
    fail_rate = _option("fail-rate")

    try:
        payload = load_graph(args[0] if args else None)
        run = asyncio.run(run_graph(
            payload,
            fast="--fast" in sys.argv,
            failure_rate=float(fail_rate) if fail_rate is not None else None,
            store_kind=store_kind,
        ))
    except GraphValidationError as exc:
        console.print(f"[red]Invalid graph: {exc}[/red]")
        sys.exit(2)
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Cannot read graph: {exc}[/red]")
        sys.exit(2)

    sys.exit(0 if run is not None and run.status == RunStatus.COMPLETED else 1)


if __name__ == "__main__":
    main()
