"""FastAPI dependencies for request handling.

This module provides reusable FastAPI dependencies for:
- Orchestrator access (built once in the app lifespan)
- Caller identity
"""

from typing import Annotated

from fastapi import Header, Request

from vestis.services.generation.orchestrator import GenerationOrchestrator


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """Get the GenerationOrchestrator from app state.

    Args:
        request: FastAPI Request object (contains app.state)

    Returns:
        Orchestrator created in the app lifespan (tests inject their own)

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(orchestrator=Depends(get_orchestrator)):
        ...     projection = await orchestrator.get_status(generation_id)
    """
    return request.app.state.orchestrator


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Opaque caller id from the x-user-id header, "anonymous" when absent.

    Identity is established upstream; this service only records it.
    """
    return x_user_id or "anonymous"
