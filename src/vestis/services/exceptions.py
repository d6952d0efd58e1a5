"""Service error hierarchy for provider, storage and generation operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)

Only the initial create call surfaces provider errors to clients as hard
failures. Everything that goes wrong after a provider reports success is
written into the generation record instead of being raised.
"""

from typing import Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    - Provider polling loop timeout
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Rejected payloads (400, 422)
    - Missing storage buckets
    """

    pass


# Provider-specific errors
class ProviderError(ServiceError):
    """Base exception for upstream image-generation provider errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProviderSubmissionError(ProviderError, PermanentError):
    """Upstream rejected the job at creation time.

    Carries the upstream status code and message verbatim. Not retried
    automatically; the caller must re-submit.
    """

    pass


class ProviderPollError(ProviderError, TransientError):
    """Checking a job's status failed (transport error, HTTP error or timeout).

    Distinct from the provider reporting a failed job. The generation stays
    in processing so a later status check can retry.
    """

    pass


# Artifact storage errors
class StorageError(ServiceError):
    """Base exception for artifact store errors."""

    pass


class StorageConfigurationError(StorageError, PermanentError):
    """Destination bucket is missing or misconfigured."""

    def __init__(self, message: str, bucket: str):
        super().__init__(message)
        self.bucket = bucket


class ArtifactUploadError(StorageError):
    """Upload to the artifact store failed for a non-configuration reason."""

    pass


class ArtifactDownloadError(StorageError, TransientError):
    """Fetching the provider's output bytes failed."""

    pass


# Generation lifecycle errors
class GenerationError(ServiceError):
    """Base exception for generation lifecycle errors."""

    pass


class GenerationNotFoundError(GenerationError, PermanentError):
    """No generation exists for the requested id (and type)."""

    pass


class InvalidSourceGenerationError(GenerationError, PermanentError):
    """A composite references a source generation that is missing or unusable."""

    pass
