from reloop.models.base import Base  # noqa: F401

from reloop.models.api_key import ApiKey  # noqa: F401
from reloop.models.listing import Listing, ListingView  # noqa: F401
from reloop.models.conversation import Conversation, ConversationParticipant  # noqa: F401
from reloop.models.message import Message  # noqa: F401
from reloop.models.agreement import Agreement  # noqa: F401
from reloop.models.transaction import Transaction  # noqa: F401
from reloop.models.outbox import OutboxEvent  # noqa: F401
from reloop.models.notification import Notification  # noqa: F401
from reloop.models.idempotency import IdempotencyKey  # noqa: F401
from reloop.models.audit_log import AuditLog  # noqa: F401
