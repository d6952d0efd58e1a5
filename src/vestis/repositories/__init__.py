"""Repository layer for Vestis backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from vestis.repositories.generation import GenerationRepository

__all__ = [
    "GenerationRepository",
]
