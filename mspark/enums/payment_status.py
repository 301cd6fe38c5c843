from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    draft = "draft"
    in_progress = "in_progress"
    processing = "processing"
    new = "new"
    pending = "pending"
    confirming = "confirming"
    paid = "paid"
    invalid = "invalid"
    expired = "expired"
    canceled = "canceled"
    refunded = "refunded"
    partially_refunded = "partially_refunded"

    @property
    def is_failed(self) -> bool:
        return self in FAILED_STATUSES

    @classmethod
    def from_gateway(cls, raw: Optional[str], default: "PaymentStatus" = None) -> "PaymentStatus":
        """Map a CoinGate order/payout status onto our status set"""
        if raw in cls._value2member_map_:
            return cls(raw)
        if raw in _GATEWAY_ALIASES:
            return _GATEWAY_ALIASES[raw]
        return default or cls.pending


FAILED_STATUSES = frozenset({PaymentStatus.invalid, PaymentStatus.expired, PaymentStatus.canceled})
REFUNDED_STATUSES = frozenset({PaymentStatus.refunded, PaymentStatus.partially_refunded})
SETTLED_STATUSES = frozenset({PaymentStatus.paid}) | REFUNDED_STATUSES

# payout statuses that have no direct counterpart
_GATEWAY_ALIASES = {
    "completed": PaymentStatus.paid,
    "failed": PaymentStatus.invalid,
    "rejected": PaymentStatus.canceled,
}
