"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from vestis.models.generation import (
    TERMINAL_STATUSES,
    Generation,
    GenerationStatus,
    GenerationType,
    InvalidStateTransition,
)

__all__ = [
    "Generation",
    "GenerationStatus",
    "GenerationType",
    "InvalidStateTransition",
    "TERMINAL_STATUSES",
]
