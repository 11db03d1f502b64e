"""Shared constants for procureflow."""

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_CANCELLED = "cancelled"
TERMINAL_STATUSES = (STATUS_APPROVED, STATUS_REJECTED, STATUS_CANCELLED)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

MODE_ANY = "any"
MODE_ALL = "all"

DEFAULT_ROUTING_ATTRIBUTE = "amount"
DEFAULT_STALE_RETRY_ATTEMPTS = 1
DEFAULT_RETRY_BASE_DELAY = 0.05
