"""
In-memory Run Store.
内存运行记录存储。

The process-wide default: records live in a dict and disappear on restart.
进程内默认实现：记录保存在 dict 中，重启后丢失。
"""

from __future__ import annotations

from schema import Run
from store.base import RunStore


class InMemoryRunStore(RunStore):
    """Dict-backed run store."""

    def __init__(self) -> None:
        super().__init__()
        self._runs: dict[str, Run] = {}

    def _load(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def _save(self, run: Run) -> None:
        self._runs[run.run_id] = run

    def _remove(self, run_id: str) -> bool:
        return self._runs.pop(run_id, None) is not None

    def _all(self) -> list[Run]:
        return list(self._runs.values())

    def __len__(self) -> int:
        return len(self._runs)
