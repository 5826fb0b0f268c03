"""
Error taxonomy for the filtering engine.

Request-level failures derive from ``FilterError`` and carry the HTTP-like
status and reason the orchestrator responds with. Classifier failures are
normalized into ``ClassifierError`` at the call boundary so the retry
machinery never inspects a collaborator's native exception hierarchy.
"""

from enum import Enum
from typing import Dict, Optional


class FilterError(Exception):
    """Base class for errors that terminate a filter request."""

    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def reason(self) -> str:
        return type(self).__name__


# Configuration (fatal, 500)

class ConfigurationError(FilterError):
    status = 500


class MissingDatabaseUrlError(ConfigurationError):
    def __init__(self):
        super().__init__("JOBFILTER_DATABASE_URL environment variable not set")


class MissingOpenAIKeyError(ConfigurationError):
    def __init__(self):
        super().__init__("OPENAI_API_KEY environment variable not set")


class MissingApifyTokenError(ConfigurationError):
    def __init__(self):
        super().__init__("APIFY_TOKEN environment variable not set")


class InvalidSettingError(ConfigurationError):
    def __init__(self, name: str, value: str):
        super().__init__(f"Invalid value for {name}: {value!r}")
        self.name = name


# Input validation (400)

class ValidationError(FilterError):
    status = 400


class MissingPolicyIdError(ValidationError):
    def __init__(self):
        super().__init__("Missing policy id in request")


class InvalidPolicyIdError(ValidationError):
    def __init__(self, policy_id: str):
        super().__init__(f"Malformed policy id: {policy_id!r}")


class MissingSourceIdError(ValidationError):
    def __init__(self):
        super().__init__("Missing classifier source id in request")


class ProfileSectionMissingError(ValidationError):
    def __init__(self, section: str):
        super().__init__(f"No '{section}' section found in applicant profile")
        self.section = section


# Not found

class PolicyNotFoundError(FilterError):
    status = 404

    def __init__(self, policy_id: str):
        super().__init__(f"Policy not found: {policy_id}")


class NoScrapeUrlsError(FilterError):
    status = 500

    def __init__(self):
        super().__init__("No scrape URLs found in the store")


# Store and scraper

class StoreUnavailableError(FilterError):
    status = 503


class RecordNotFoundError(FilterError):
    status = 404

    def __init__(self, posting_id: str):
        super().__init__(f"No stored record for posting {posting_id}")
        self.posting_id = posting_id


class ScrapeError(FilterError):
    status = 502


# Classifier

class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    NETWORK = "network"
    CLIENT = "client"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    INVALID_OUTPUT = "invalid_output"
    DEADLINE = "deadline"
    UNKNOWN = "unknown"


class ClassifierError(Exception):
    """Tagged classifier failure: ``{status, kind, message}`` plus response headers."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.kind = kind
        self.headers = dict(headers or {})

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.kind.value} ({self.status}): {self.message}"
        return f"{self.kind.value}: {self.message}"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ClassifierError":
        """Wrap any exception; tagged errors pass through unchanged."""
        if isinstance(exc, cls):
            return exc
        error = cls(f"{type(exc).__name__}: {exc}")
        error.__cause__ = exc
        return error
