"""Exception hierarchy for cms-bridge.

Everything raised on purpose derives from CMSMigrationError. HTTP failures
are APIError subclasses chosen by status code in the base client; the CLI
maps the families onto exit codes.
"""


class CMSMigrationError(Exception):
    """Root of every error cms-bridge raises deliberately."""


class APIError(CMSMigrationError):
    """Error status from the source or target platform.

    Attributes:
        message: Short description
        status_code: HTTP status, when there was a response
        response: Decoded error body
    """

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """``[status] message: body`` with the parts that are present."""
        text = f"[{self.status_code}] {self.message}" if self.status_code else self.message
        return f"{text}: {self.response}" if self.response else text


class AuthenticationError(APIError):
    """401: credentials rejected or expired."""


class AuthorizationError(APIError):
    """403: authenticated but not allowed."""


class NotFoundError(APIError):
    """404: resource, file or endpoint missing."""


class ConflictError(APIError):
    """409: the target already holds a conflicting record."""


class RateLimitError(APIError):
    """429: throttled; ``retry_after`` carries the Retry-After seconds when sent."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response: dict | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, status_code, response)
        self.retry_after = retry_after


class ServerError(APIError):
    """5xx from either platform; retried by the fetch and media policies."""


class NetworkError(CMSMigrationError):
    """Timeout or transport failure before any response arrived."""


class AuthExhaustedError(CMSMigrationError):
    """Every configured source authentication strategy failed.

    Attributes:
        attempts: Strategy name -> the failure it produced
    """

    def __init__(self, message: str, attempts: dict[str, str] | None = None):
        self.attempts = attempts or {}
        details = "; ".join(f"{name}: {error}" for name, error in self.attempts.items())
        super().__init__(f"{message} ({details})" if details else message)


class ConfigurationError(CMSMigrationError):
    """Configuration file missing, unreadable or invalid."""


class StateError(CMSMigrationError):
    """Identity map or media cache could not be written."""


class MigrationError(CMSMigrationError):
    """A record could not be migrated."""


class TransformationError(MigrationError):
    """A source record could not be turned into a target payload."""


class MediaTransferError(MigrationError):
    """A media asset could not be downloaded or re-uploaded."""

    def __init__(self, message: str, source_file_id: str | None = None):
        self.source_file_id = source_file_id
        super().__init__(message)
