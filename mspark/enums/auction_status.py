from enum import Enum


class AuctionStatus(str, Enum):
    # reserved: no creation path produces it yet
    pending = "pending"
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
