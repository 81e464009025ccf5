import asyncio


class KumoError(Exception):
    """Base exception for scrape pipeline errors."""

    def __init__(self, message: str, display_message: str = None):
        self.message = message
        self.display_message = display_message or message
        super().__init__(self.message)


class SourceNotFound(KumoError):
    """Raised when a source has no content for the requested slug."""

    def __init__(self, source: str, slug: str):
        self.source = source
        self.slug = slug
        super().__init__(f"{source}: nothing found for '{slug}'")


class SourceTransientError(KumoError):
    """Raised on network, timeout or parse failures talking to a source."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class JobValidationError(KumoError):
    """Raised for malformed job input. Never retried."""


class PersistenceError(KumoError):
    """Raised when a write to durable storage fails."""


class ExhaustedSources(KumoError):
    """Raised when every configured source returned NotFound."""

    def __init__(self, slug: str, sources: list[str]):
        self.slug = slug
        self.sources = sources
        super().__init__(
            f"No source produced data for '{slug}' (tried: {', '.join(sources) or 'none'})"
        )


class EnrichmentError(KumoError):
    """Raised when the metadata lookup fails."""


class BatchFailed(KumoError):
    """Raised when every item of a batch job failed."""

    def __init__(self, message: str, retryable: bool):
        self.retryable = retryable
        super().__init__(message)


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, BatchFailed):
        return error.retryable
    if isinstance(error, (JobValidationError, ExhaustedSources)):
        return False
    if isinstance(error, (SourceTransientError, PersistenceError, asyncio.TimeoutError)):
        return True
    return isinstance(error, Exception)
