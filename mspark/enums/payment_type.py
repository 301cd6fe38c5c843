from enum import Enum


class PaymentType(str, Enum):
    order = "order"
    send = "send"
    refund = "refund"
