"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so services can persist it as
    # job.error_message / history.error_message without parsing str(exc). Those columns
    # are user-visible, so keep messages short and human - NEVER put tracebacks in here.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    # Yo, also used for ownership failures (job belongs to another user). Foreign ids
    # answer "not found", never "forbidden".
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input fails validation.

    Nothing is persisted when this is raised (e.g. submitting a job for a
    playlist the user can't see, or an unknown sync frequency).
    """

    pass


class InvalidStateException(DomainException):
    """Raised when an entity is in an invalid state for the requested operation.

    Example: manually syncing a disabled sync config.
    """

    pass


class DuplicateEntityException(DomainException):
    """Raised when trying to create a duplicate entity."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class BusinessRuleViolation(DomainException):
    """A business rule was violated.

    HTTP Status: 400
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    HTTP Status: 503 (Service Unavailable)

    Example:
        raise ConfigurationError("Token encryption key not configured")
    """

    pass


class CredentialError(DomainException):
    """Stored provider credentials are missing, revoked or unrefreshable.

    Hey future me - this is the "go reconnect your account" category! Unlike transient
    errors, jobs/syncs that hit this fail with a message telling the user to
    reconnect, and nothing retries them automatically.

    HTTP Status: 401
    """

    def __init__(
        self,
        message: str = "Music provider credentials are invalid. Please reconnect.",
        provider: str | None = None,
        requires_reauth: bool = True,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.requires_reauth = requires_reauth


AuthenticationError = CredentialError


class TokenRefreshException(CredentialError):
    """Raised when the provider rejects a refresh token.

    Common causes:
    - User revoked app access in the provider's account settings
    - Refresh token expired or was rotated elsewhere
    - App credentials changed
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please reconnect your music account.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        # Hey - 400 invalid_grant means the refresh token is dead,
        # 401/403 mean access was revoked. Anything else may just be a hiccup.
        super().__init__(
            message,
            requires_reauth=error_code == "invalid_grant" or http_status in (400, 401, 403),
        )
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401


class TokenEncryptionError(DomainException):
    """Encrypted token could not be decrypted (wrong key or corrupted data)."""

    pass


class ExternalServiceError(DomainException):
    """External service (catalog provider, payment processor) returned an error.

    HTTP Status: 502 (Bad Gateway)

    Example:
        raise ExternalServiceError("Spotify API error: 503 Service Unavailable")
    """

    def __init__(self, message: str, service: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class RateLimitExceededError(DomainException):
    """External service rate limit was exceeded.

    HTTP Status: 429
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransientWebhookError(DomainException):
    """Webhook side effect failed for a reason that is worth retrying."""

    pass


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "DuplicateEntityException",
    "ValidationException",
    "InvalidStateException",
    "BusinessRuleViolation",
    "ExternalServiceError",
    "RateLimitExceededError",
    "CredentialError",
    "AuthenticationError",
    "TokenRefreshException",
    "TokenEncryptionError",
    "TransientWebhookError",
    "ConfigurationError",
]
