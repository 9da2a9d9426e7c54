"""Exception taxonomy shared by the engine, the repositories and the API."""

from __future__ import annotations


class ScriptflowError(Exception):
    """Base class for all errors raised by scriptflow.

    ``status_code`` is the HTTP status the API layer answers with and
    ``public_message`` is the only text that ever reaches a response body.
    """

    status_code: int = 500
    default_message: str = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def public_message(self) -> str:
        return str(self)


class ValidationError(ScriptflowError):
    """A request payload is malformed or misses required fields."""

    status_code = 400
    default_message = "Invalid payload"


class PipelineNotFoundError(ScriptflowError):
    """No pipeline matches the requested id or webhook secret."""

    status_code = 404
    default_message = "Pipeline not found"


class AuthenticationError(ScriptflowError):
    """A webhook signature or timestamp did not verify."""

    status_code = 401
    default_message = "Invalid signature"


class EngineUnavailableError(ScriptflowError):
    """The execution engine is switched off or not configured."""

    status_code = 503
    default_message = "Pipeline engine unavailable"


class PipelineExecutionError(ScriptflowError):
    """A run aborted; no artifact is produced."""

    status_code = 500
    default_message = "Pipeline execution failed"

    @property
    def public_message(self) -> str:
        return self.default_message


class StepExecutionError(PipelineExecutionError):
    """A step's transformation raised."""

    def __init__(self, index: int, kind: str, cause: BaseException) -> None:
        super().__init__(f"Step {index} ({kind}) failed: {cause}")
        self.index = index
        self.kind = kind


class ContentResolutionError(PipelineExecutionError):
    """The run has no usable content, or its source could not be fetched."""


class StorageError(ScriptflowError):
    """A repository operation failed."""

    status_code = 500
    default_message = "Pipeline storage failed"

    @property
    def public_message(self) -> str:
        return self.default_message


class StorageTransportError(StorageError):
    """The storage backend could not be reached.

    Only this class triggers demotion to the next backend tier.
    """


class RepositoryDataError(StorageError):
    """Stored data could not be decoded. Never triggers demotion."""


__all__ = [
    "ScriptflowError",
    "ValidationError",
    "PipelineNotFoundError",
    "AuthenticationError",
    "EngineUnavailableError",
    "PipelineExecutionError",
    "StepExecutionError",
    "ContentResolutionError",
    "StorageError",
    "StorageTransportError",
    "RepositoryDataError",
]
