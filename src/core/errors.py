"""
Exception hierarchy shared by collectors, the LLM layer and the workflows.
"""


class TechIntelError(Exception):
    """Base class for all errors raised by the system."""


# ----------------------------
# Collection
# ----------------------------
class CollectorError(TechIntelError):
    """A source could not be collected."""


class NotFoundError(CollectorError):
    """The upstream resource (repository, feed, subreddit) does not exist."""


class RateLimitedError(CollectorError):
    """The upstream API refused the request because of rate limiting."""


class UpstreamError(CollectorError):
    """The upstream API failed, timed out or was unreachable."""


class ConfigError(CollectorError):
    """The source definition cannot be used as configured."""


class ParseError(CollectorError):
    """The upstream payload could not be understood."""


# ----------------------------
# LLM providers
# ----------------------------
class ProviderError(TechIntelError):
    """A completion backend failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderNotConfiguredError(ProviderError):
    pass


class ProviderRateLimitedError(ProviderError):
    pass


class ProviderTimeoutError(ProviderError):
    pass


class ProviderUnavailableError(ProviderError):
    """The backend could not be reached (e.g. local server not running)."""


class UnknownProviderError(TechIntelError):
    pass


class NoProviderAvailableError(TechIntelError):
    pass


# ----------------------------
# Workflows / records
# ----------------------------
class AlreadyProcessingError(TechIntelError):
    pass


class RecordNotFoundError(TechIntelError):
    pass


class DigestLockedError(TechIntelError):
    """Published digests can no longer be edited."""
