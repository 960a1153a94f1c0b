"""回复生成流水线（上下文窗口、后台调度、运行记录）。"""

from .completion import CompletionPipeline
from .context_window import ContextWindow, ContextWindowBuilder
from .scheduler import BackgroundScheduler
from .trace import PipelineRun, RunRecorder

__all__ = [
    "BackgroundScheduler",
    "CompletionPipeline",
    "ContextWindow",
    "ContextWindowBuilder",
    "PipelineRun",
    "RunRecorder",
]
