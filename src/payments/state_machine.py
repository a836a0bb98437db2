"""Gateway status vocabulary and the transaction state machine.

``GATEWAY_STATUS_MAP`` is the only place gateway statuses are translated;
the synchronous response path and the webhook path both go through
``map_gateway_status``.
"""

import logging

from src.models.transaction import TransactionStatus
from src.payments.errors import IllegalTransitionError


logger = logging.getLogger(__name__)

GATEWAY_STATUS_MAP: dict[str, TransactionStatus] = {
    "capture": TransactionStatus.SUCCESS,
    "settlement": TransactionStatus.SUCCESS,
    "pending": TransactionStatus.PENDING,
    "deny": TransactionStatus.FAILED,
    "expire": TransactionStatus.FAILED,
    "cancel": TransactionStatus.CANCELLED,
    "refund": TransactionStatus.REFUND,
    "partial_refund": TransactionStatus.REFUND,
}

ALLOWED_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.PENDING: {
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.SUCCESS: {TransactionStatus.REFUND},
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
    TransactionStatus.REFUND: set(),
}

TERMINAL_STATUSES = frozenset({TransactionStatus.FAILED, TransactionStatus.CANCELLED})


def map_gateway_status(gateway_status: str) -> TransactionStatus:
    status = GATEWAY_STATUS_MAP.get(gateway_status)
    if status is None:
        logger.warning("Unmapped gateway status %r, treating as pending", gateway_status)
        return TransactionStatus.PENDING
    return status


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def assert_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    """Raise when a transition is not allowed by the state machine."""
    if not can_transition(current, target):
        raise IllegalTransitionError(current, target)


def is_terminal(status: TransactionStatus) -> bool:
    return status in TERMINAL_STATUSES
