"""Background workers for async processing tasks."""

from vestis.workers.generation_sweeper import run_generation_sweeper

__all__ = [
    "run_generation_sweeper",
]
