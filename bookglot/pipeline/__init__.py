"""bookglot pipeline package.

This package contains the orchestration facade and the per-run state used
while translating and caching opened books.
"""

from .orchestrator import TranslationPipeline
from .runtime import PipelineRun, RunState

__all__ = ["PipelineRun", "RunState", "TranslationPipeline"]
