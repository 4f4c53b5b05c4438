from typing import Optional


class RequestarrError(Exception):
    """Base class for errors that end up as a short reply to the user."""


class ConfigurationError(RequestarrError):
    def __init__(self, message: str, backend: Optional[str] = None) -> None:
        super().__init__(message)
        self.backend = backend


class ApiError(RequestarrError):
    """A backend call failed after retries. status is None for network errors."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.url = url

    @property
    def transient(self) -> bool:
        return self.status is None or self.status == 429 or self.status >= 500


class RateLimitError(ApiError):
    pass


class SchemaError(RequestarrError):
    """A backend response did not have the shape we expect."""


class InvalidQueryError(RequestarrError):
    pass


class ResolverError(RequestarrError):
    def __init__(self, backend: str, query: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"{backend} lookup failed for {query!r}: {cause}")
        self.backend = backend
        self.query = query
        self.cause = cause


class LookupDependencyError(RequestarrError):
    """Root folder, quality profile or metadata profile is missing on the backend."""

    def __init__(self, backend: str, missing: str) -> None:
        super().__init__(f"No {missing} found in {backend}")
        self.backend = backend
        self.missing = missing


class MutationError(RequestarrError):
    def __init__(self, backend: str, action: str, status: Optional[int] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(f"{backend} {action} failed (status={status}): {cause}")
        self.backend = backend
        self.action = action
        self.status = status
        self.cause = cause


class AuthorizationError(RequestarrError):
    pass
