"""Generation API endpoints.

This module implements the create/poll endpoints for both generation types:
- POST /api/generate-try-on - Start a virtual try-on generation
- GET /api/generate-try-on?id= - Check a try-on generation
- POST /api/generate-composite - Start a scene composite generation
- GET /api/generate-composite?id= - Check a composite generation

POST returns as soon as the provider accepted the job. Clients then poll GET
until the status is completed or failed.
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from vestis.api.dependencies import get_orchestrator, get_user_id
from vestis.models.generation import GenerationType
from vestis.services.exceptions import (
    GenerationNotFoundError,
    InvalidSourceGenerationError,
    ProviderPollError,
    ProviderSubmissionError,
)
from vestis.services.generation.orchestrator import GenerationOrchestrator
from vestis.services.providers.base import GenerationInput
from vestis.services.providers.replicate_tryon import DEFAULT_TRYON_PROMPT

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["generations"])

TRYON_ESTIMATED_SECONDS = 15
COMPOSITE_ESTIMATED_SECONDS = 20


# Request/Response Models


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )


class TryOnRequest(CamelModel):
    """Request model for starting a try-on generation."""

    model_image_id: Optional[str] = Field(default=None, description="Client-side model image id")
    clothing_image_id: Optional[str] = Field(
        default=None, description="Client-side clothing image id"
    )
    model_image_data: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("modelImageData", "modelImageBase64"),
        description="Model photo as a data URL (or URL)",
    )
    clothing_image_data: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("clothingImageData", "clothingImageBase64"),
        description="Clothing photo as a data URL (or URL)",
    )
    prompt: str = Field(
        default=DEFAULT_TRYON_PROMPT,
        min_length=5,
        max_length=1000,
        description="Descriptive prompt for the try-on",
    )


class CompositeRequest(CamelModel):
    """Request model for starting a composite generation."""

    figure_image_id: Optional[str] = Field(default=None, description="Client-side figure image id")
    scene_image_id: Optional[str] = Field(default=None, description="Client-side scene image id")
    figure_image_data: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("figureImageData", "figureImageBase64"),
        description="Figure image (e.g. a try-on result) as a data URL (or URL)",
    )
    scene_image_data: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("sceneImageData", "sceneImageBase64"),
        description="Scene image as a data URL (or URL)",
    )
    prompt: str = Field(
        ...,
        min_length=10,
        max_length=1000,
        description="Detailed prompt describing the composition",
    )
    source_generation_id: Optional[UUID] = Field(
        default=None,
        description="Completed try-on generation that produced the figure image",
    )


class CreateGenerationResponse(CamelModel):
    """Response model for a started generation."""

    id: str
    status: str = "processing"
    message: str
    estimated_time_seconds: int


class GenerationStatusResponse(CamelModel):
    """Response model for generation status checks."""

    id: str
    status: str
    progress: int
    image_url: Optional[str] = None
    error: Optional[str] = None


# Shared handlers


async def _create(
    orchestrator: GenerationOrchestrator,
    generation_type: GenerationType,
    payload: GenerationInput,
    metadata: dict,
    user_id: str,
    label: str,
    estimated_seconds: int,
    source_generation_id: Optional[UUID] = None,
) -> CreateGenerationResponse:
    try:
        generation_id = await orchestrator.create(
            generation_type,
            payload,
            metadata=metadata,
            user_id=user_id,
            source_generation_id=source_generation_id,
        )
    except InvalidSourceGenerationError as e:
        logger.warning("generation.create.invalid_source", type=generation_type.value, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Invalid source generation", "message": str(e)},
        )
    except ProviderSubmissionError as e:
        logger.error(
            "generation.create.submission_failed",
            type=generation_type.value,
            error=e.message,
            upstream_status=e.status_code,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"Failed to initiate {label} generation", "message": e.message},
        )
    except Exception as e:
        logger.error(
            "generation.create.unexpected_error",
            type=generation_type.value,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"Failed to generate {label} image", "message": str(e)},
        )

    return CreateGenerationResponse(
        id=str(generation_id),
        status="processing",
        message=f"{label.capitalize()} generation has been initiated",
        estimated_time_seconds=estimated_seconds,
    )


async def _status(
    orchestrator: GenerationOrchestrator,
    generation_type: GenerationType,
    generation_id: Optional[str],
) -> GenerationStatusResponse:
    if not generation_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Missing generation ID"},
        )

    try:
        parsed_id = UUID(generation_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Generation not found", "message": "Malformed generation id"},
        )

    try:
        projection = await orchestrator.get_status(parsed_id, generation_type)
    except GenerationNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Generation not found", "message": str(e)},
        )
    except ProviderPollError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to check generation status", "message": str(e)},
        )
    except Exception as e:
        logger.error(
            "generation.status.unexpected_error",
            generation_id=generation_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to check generation status", "message": str(e)},
        )

    return GenerationStatusResponse(
        id=str(projection.id),
        status=projection.status.value,
        progress=projection.progress,
        image_url=projection.image_url,
        error=projection.error,
    )


# API Endpoints


@router.post(
    "/generate-try-on",
    response_model=CreateGenerationResponse,
    status_code=status.HTTP_200_OK,
)
async def create_try_on(
    request: TryOnRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(get_user_id),
) -> CreateGenerationResponse:
    """Start a virtual try-on generation.

    Example:
        POST /api/generate-try-on
        {
            "modelImageData": "data:image/png;base64,...",
            "clothingImageData": "data:image/png;base64,...",
            "prompt": "A person wearing a red jacket"
        }

        Response 200:
        {
            "id": "8f0c...",
            "status": "processing",
            "message": "Try-on generation has been initiated",
            "estimatedTimeSeconds": 15
        }
    """
    return await _create(
        orchestrator,
        GenerationType.TRY_ON,
        GenerationInput(
            first_image=request.model_image_data,
            second_image=request.clothing_image_data,
            prompt=request.prompt,
        ),
        metadata={
            "modelImageId": request.model_image_id,
            "clothingImageId": request.clothing_image_id,
            "prompt": request.prompt,
        },
        user_id=user_id,
        label="try-on",
        estimated_seconds=TRYON_ESTIMATED_SECONDS,
    )


@router.get(
    "/generate-try-on",
    response_model=GenerationStatusResponse,
    response_model_exclude_none=True,
)
async def get_try_on_status(
    id: Optional[str] = Query(default=None, description="Generation id returned by POST"),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationStatusResponse:
    """Check a try-on generation, advancing it if the provider has news."""
    return await _status(orchestrator, GenerationType.TRY_ON, id)


@router.post(
    "/generate-composite",
    response_model=CreateGenerationResponse,
    status_code=status.HTTP_200_OK,
)
async def create_composite(
    request: CompositeRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    user_id: str = Depends(get_user_id),
) -> CreateGenerationResponse:
    """Start a scene composite generation.

    When sourceGenerationId is given it must name a completed try-on
    generation; otherwise the request is rejected with 400.
    """
    return await _create(
        orchestrator,
        GenerationType.COMPOSITE,
        GenerationInput(
            first_image=request.figure_image_data,
            second_image=request.scene_image_data,
            prompt=request.prompt,
        ),
        metadata={
            "figureImageId": request.figure_image_id,
            "sceneImageId": request.scene_image_id,
            "prompt": request.prompt,
        },
        user_id=user_id,
        label="composite",
        estimated_seconds=COMPOSITE_ESTIMATED_SECONDS,
        source_generation_id=request.source_generation_id,
    )


@router.get(
    "/generate-composite",
    response_model=GenerationStatusResponse,
    response_model_exclude_none=True,
)
async def get_composite_status(
    id: Optional[str] = Query(default=None, description="Generation id returned by POST"),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> GenerationStatusResponse:
    """Check a composite generation, advancing it if the provider has news."""
    return await _status(orchestrator, GenerationType.COMPOSITE, id)
