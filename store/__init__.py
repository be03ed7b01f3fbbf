from .base import RunNotFoundError, RunStore, build_run
from .memory import InMemoryRunStore
from .file import JsonFileRunStore

__all__ = ["RunStore", "RunNotFoundError", "InMemoryRunStore", "JsonFileRunStore", "build_run"]
