"""Canonical provider adapter contract.

Every provider adapter exposes two verbs:

- submit(input) -> external job id
- poll(external_id) -> PollResult

and translates its provider's response shapes into the three-way
ProviderStatus used by the orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

# Probed in order when a provider returns its output as an object.
OUTPUT_URL_KEYS = ("image", "url", "output", "result", "generated_image")

_SUCCEEDED = frozenset({"succeeded", "completed"})
_FAILED = frozenset({"failed", "canceled", "cancelled", "error"})


class ProviderStatus(str, Enum):
    """Canonical provider job status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


def normalize_status(raw_status: Optional[str]) -> ProviderStatus:
    """Map a provider-specific status string onto ProviderStatus.

    Unknown and missing statuses count as in progress: the job exists, and a
    later poll will learn more.
    """
    status = (raw_status or "").strip().lower()
    if status in _SUCCEEDED:
        return ProviderStatus.SUCCEEDED
    if status in _FAILED:
        return ProviderStatus.FAILED
    return ProviderStatus.IN_PROGRESS


@dataclass(frozen=True)
class PollResult:
    """Provider poll outcome in canonical form.

    Attributes:
        status: Canonical status
        provider_status: Raw status string as reported by the provider
        output: Raw output reference (string, list or mapping) when succeeded
        error: Provider-supplied failure reason, if any
    """

    status: ProviderStatus
    provider_status: str = ""
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def from_provider(
        cls, raw_status: Optional[str], output: Any = None, error: Any = None
    ) -> "PollResult":
        return cls(
            status=normalize_status(raw_status),
            provider_status=raw_status or "",
            output=output,
            error=str(error) if error else None,
        )


@dataclass(frozen=True)
class GenerationInput:
    """Provider-agnostic submit payload.

    Attributes:
        first_image: Model image (try-on) or figure image (composite); data URL or URL
        second_image: Clothing image (try-on) or scene image (composite); data URL or URL
        prompt: Free-text prompt
        parameters: Optional provider tuning overrides
    """

    first_image: str
    second_image: str
    prompt: str
    parameters: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    """Normalizes one external AI service into submit/poll."""

    name: str

    async def submit(self, payload: GenerationInput) -> str: ...

    async def poll(self, external_id: str) -> PollResult: ...


def _first_url(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, (list, tuple)) and value:
        first = value[0]
        return first if isinstance(first, str) and first else None
    return None


def resolve_output_url(output: Any) -> Optional[str]:
    """Resolve a provider output reference to a single image URL.

    Accepted shapes:
    - a non-empty string URL
    - a non-empty list of URLs (the first element is authoritative)
    - a mapping probed with OUTPUT_URL_KEYS in order; each value may itself be
      a string or a non-empty list

    Returns:
        The URL, or None if nothing usable was found
    """
    url = _first_url(output)
    if url:
        return url

    if isinstance(output, dict):
        for key in OUTPUT_URL_KEYS:
            url = _first_url(output.get(key))
            if url:
                return url

    return None


def describe_output(output: Any) -> str:
    """Short shape description of an unusable output, for error messages."""
    if output is None:
        return "none"
    if isinstance(output, dict):
        keys = ", ".join(sorted(str(k) for k in output)) or "no keys"
        return f"object ({keys})"
    if isinstance(output, (list, tuple)):
        return "empty array" if not output else "array"
    return type(output).__name__
