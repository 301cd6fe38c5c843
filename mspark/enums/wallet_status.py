from enum import Enum


class WalletStatus(str, Enum):
    active = "active"
    pending = "pending"
    blocked = "blocked"
