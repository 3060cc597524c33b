"""Error taxonomy for the exchange core.

Every failure the services raise is a ReloopError carrying a stable code, a
category and the HTTP status the API maps it to. Categories:

    validation     rejected immediately, never retried
    authorization  permission failure, audited, never retried
    not_found      unknown id (or an id the caller may not see)
    conflict       state conflict, reported verbatim so the caller can re-fetch
    transient      timeouts and overload, safe to retry
"""

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    TRANSIENT = "transient"


class ReloopError(Exception):
    code = "REL_ERROR"
    category = ErrorCategory.VALIDATION
    http_status = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, **detail):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
            }
        }


# validation

class EmptyBody(ReloopError):
    code = "EMPTY_BODY"
    default_message = "Message content cannot be empty"


class BodyTooLong(ReloopError):
    code = "BODY_TOO_LONG"
    default_message = "Message is too long"


class SelfDealing(ReloopError):
    code = "SELF_DEALING"
    default_message = "You cannot do this with yourself"


class ListingNotActive(ReloopError):
    code = "LISTING_NOT_ACTIVE"
    default_message = "Listing is no longer available"


class InvalidOutcome(ReloopError):
    code = "INVALID_OUTCOME"
    default_message = "Unknown agreement outcome"


# authorization

class _AuthorizationError(ReloopError):
    category = ErrorCategory.AUTHORIZATION
    http_status = 403


class NotOwner(_AuthorizationError):
    code = "NOT_OWNER"
    default_message = "Only the listing owner can do this"


class NotCounterparty(_AuthorizationError):
    code = "NOT_COUNTERPARTY"
    default_message = "Only the agreement counterparty can do this"


class NotParticipant(_AuthorizationError):
    code = "NOT_PARTICIPANT"
    default_message = "You are not a participant"


class NotRecipient(_AuthorizationError):
    code = "NOT_RECIPIENT"
    default_message = "This notification belongs to another user"


class Unauthenticated(ReloopError):
    code = "UNAUTHENTICATED"
    category = ErrorCategory.AUTHORIZATION
    http_status = 401
    default_message = "Missing or invalid API key"


# not found

class _NotFoundError(ReloopError):
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class ListingNotFound(_NotFoundError):
    code = "LISTING_NOT_FOUND"
    default_message = "Listing not found"


class AgreementNotFound(_NotFoundError):
    code = "AGREEMENT_NOT_FOUND"
    default_message = "Agreement not found"


class ConversationNotFound(_NotFoundError):
    code = "CONVERSATION_NOT_FOUND"
    default_message = "Conversation not found"


class NotificationNotFound(_NotFoundError):
    code = "NOTIFICATION_NOT_FOUND"
    default_message = "Notification not found"


# state conflicts

class _ConflictError(ReloopError):
    category = ErrorCategory.CONFLICT
    http_status = 409


class InvalidTransition(_ConflictError):
    code = "INVALID_TRANSITION"
    default_message = "Listing cannot move to that status"


class DuplicatePending(_ConflictError):
    code = "DUPLICATE_PENDING"
    default_message = "An agreement request is already pending for this user"


class AlreadyResolved(_ConflictError):
    code = "ALREADY_RESOLVED"
    default_message = "This agreement was already resolved"


class IdempotencyConflict(_ConflictError):
    code = "IDEMPOTENCY_CONFLICT"
    default_message = "Idempotency-Key reuse with different request"


# transient

class ServiceTimeout(ReloopError):
    code = "TIMEOUT"
    category = ErrorCategory.TRANSIENT
    http_status = 503
    default_message = "The operation timed out; its outcome is unknown, retry safely"
