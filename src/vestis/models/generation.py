"""Generation entity - one asynchronous image-generation job tracked end to end."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from vestis.core.timezone import utcnow


class GenerationType(str, Enum):
    """Kind of generation. Selects the provider adapter and artifact bucket."""

    TRY_ON = "try-on"
    COMPOSITE = "composite"


class GenerationStatus(str, Enum):
    """Generation lifecycle status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({GenerationStatus.COMPLETED, GenerationStatus.FAILED})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid generation state transition."""

    pass


class Generation(SQLModel, table=True):
    """Generation tracks a provider job from submission to a stored artifact.

    Only the orchestrator mutates a generation. The transition methods below
    enforce the state machine; they never touch the database themselves.
    """

    __tablename__ = "generations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    type: GenerationType = Field(index=True)
    status: GenerationStatus = Field(default=GenerationStatus.PENDING, index=True)
    user_id: str = Field(default="anonymous", max_length=255)
    external_id: Optional[str] = Field(default=None, max_length=255)
    storage_path: Optional[str] = Field(default=None, max_length=1024)
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = Field(default=None)
    input_metadata: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))
    source_generation_id: Optional[UUID] = Field(default=None, foreign_key="generations.id")
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_processing(self, external_id: str) -> None:
        """Transition from pending to processing once the provider accepted the job.

        Args:
            external_id: Provider-assigned job identifier

        Raises:
            InvalidStateTransition: If current status is not pending
            ValueError: If external_id is empty
        """
        if self.status != GenerationStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. "
                "Generation must be in pending state."
            )
        if not external_id:
            raise ValueError("external_id is required")
        self.external_id = external_id
        self.status = GenerationStatus.PROCESSING
        self.progress = 0
        self.updated_at = utcnow()

    def mark_progress(self, progress: int) -> None:
        """Record a progress estimate while processing. Never moves backwards.

        Raises:
            InvalidStateTransition: If current status is not processing
        """
        if self.status != GenerationStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot record progress from {self.status.value}. "
                "Generation must be in processing state."
            )
        self.progress = min(100, max(self.progress, progress))
        self.updated_at = utcnow()

    def mark_completed(self, storage_path: str) -> None:
        """Transition from processing to completed.

        Args:
            storage_path: Path of the stored artifact inside the type's bucket

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If storage_path is empty
        """
        if self.status != GenerationStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. "
                "Generation must be in processing state."
            )
        if not storage_path:
            raise ValueError("storage_path is required")
        self.storage_path = storage_path
        self.status = GenerationStatus.COMPLETED
        self.progress = 100
        self.updated_at = utcnow()

    def mark_failed(self, error: str) -> None:
        """Transition from any non-terminal state to failed.

        Args:
            error: Human-readable failure reason

        Raises:
            InvalidStateTransition: If current status is already terminal (completed/failed)
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.error = error
        self.status = GenerationStatus.FAILED
        self.progress = 100
        self.updated_at = utcnow()
