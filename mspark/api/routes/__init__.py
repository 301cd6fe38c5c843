from .auctions import router as auctions_router
from .payments import router as payments_router
from .payments import send_router
from .scheduler import router as scheduler_router
