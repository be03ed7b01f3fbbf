"""
JSON-file Run Store - one document per run.
基于 JSON 文件的运行记录存储 —— 每个 run 一个文件。

Runs survive a restart, so a CLI invocation can inspect or clean up the
runs of an earlier one. Every save rewrites the whole document.
运行记录在重启后依然存在；每次保存都会整体重写对应文件。
"""

from __future__ import annotations

import logging
import os
import re

from pydantic import ValidationError

import config
from schema import Run
from store.base import RunStore

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonFileRunStore(RunStore):
    """
    Directory of ``<run_id>.json`` files.
    以目录下的 ``<run_id>.json`` 文件保存运行记录。
    """

    def __init__(self, directory: str | None = None):
        super().__init__()
        self._dir = directory or config.RUN_STORE_DIR  # 运行记录存储目录
        os.makedirs(self._dir, exist_ok=True)

    def _path(self, run_id: str) -> str | None:
        # 防止 run_id 中的路径分隔符逃逸出存储目录
        if not _SAFE_ID.match(run_id) or run_id.startswith("."):
            return None
        return os.path.join(self._dir, f"{run_id}.json")

    def _read(self, path: str) -> Run | None:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Run.model_validate_json(f.read())
        except (OSError, ValidationError) as exc:
            logger.warning("[RunStore] Failed to load %s: %s", path, exc)
            return None

    def _load(self, run_id: str) -> Run | None:
        path = self._path(run_id)
        if path is None or not os.path.exists(path):
            return None
        return self._read(path)

    def _save(self, run: Run) -> None:
        path = self._path(run.run_id)
        if path is None:
            raise ValueError(f"Invalid run id for file store: {run.run_id!r}")
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(run.model_dump_json(indent=2))
        os.replace(tmp, path)

    def _remove(self, run_id: str) -> bool:
        path = self._path(run_id)
        if path is None or not os.path.exists(path):
            return False
        os.remove(path)
        return True

    def _all(self) -> list[Run]:
        runs = []
        for name in sorted(os.listdir(self._dir)):
            if not name.endswith(".json"):
                continue
            run = self._read(os.path.join(self._dir, name))
            if run is not None:
                runs.append(run)
        return runs
