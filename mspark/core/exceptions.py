from datetime import datetime
from decimal import Decimal
from typing import Optional


class MsparkError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code: int = 500
    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# 400 Bad Request
class BadRequestError(MsparkError):
    status_code = 400
    default_message = "Invalid request parameters"


# 403 Forbidden
class ForbiddenError(MsparkError):
    status_code = 403
    default_message = "Forbidden access"


# 404 Not Found
class NotFoundError(MsparkError):
    status_code = 404
    default_message = "Resource not found"


# 409 Conflict
class ConflictError(MsparkError):
    status_code = 409
    default_message = "Resource conflict"


class InvalidTransitionError(ConflictError):
    default_message = "Invalid auction status transition"


class AlreadyCompletedError(InvalidTransitionError):
    default_message = "Auction is already completed"


class AuctionNotDueError(InvalidTransitionError):
    """Raised by the scheduler path when an auction has not reached its end time"""

    def __init__(self, end_time: datetime):
        self.end_time = end_time
        super().__init__(f"Auction ends at {end_time.isoformat()}")


class AuctionEndedError(BadRequestError):
    default_message = "Auction has ended"


class BidTooLowError(BadRequestError):
    def __init__(self, current_price: Decimal):
        self.current_price = current_price
        super().__init__(f"Bid must be higher than current price: {current_price}")


# 502 Bad Gateway
class UpstreamFailureError(MsparkError):
    status_code = 502
    default_message = "Upstream service failed"
