from enum import Enum


class GemStatus(str, Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"
    sold = "sold"
