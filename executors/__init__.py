from .base import NodeExecutor, render_prompt
from .simulated import SimulatedNodeExecutor
from .function import FunctionNodeExecutor

__all__ = ["NodeExecutor", "render_prompt", "SimulatedNodeExecutor", "FunctionNodeExecutor"]
