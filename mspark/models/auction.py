import uuid
from decimal import Decimal
from tortoise import fields, models

from mspark.enums.auction_status import AuctionStatus


class Auction(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)

    price_start = fields.DecimalField(max_digits=12, decimal_places=2)
    current_price = fields.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    start_time = fields.DatetimeField()
    end_time = fields.DatetimeField(index=True)
    status = fields.CharEnumField(AuctionStatus, default=AuctionStatus.active, index=True)

    gem = fields.ForeignKeyField("models.Gem", related_name="auctions")
    merchant = fields.ForeignKeyField("models.User", related_name="auctions")
    highest_bidder = fields.ForeignKeyField("models.User", related_name="leading_auctions", null=True)

    # bumped by every guarded write, see AuctionService and BidService
    version = fields.IntField(default=0)

    is_deleted = fields.BooleanField(default=False)
    deleted_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "auctions"

    def __str__(self):
        return f"Auction {self.id} - {self.status} @ {self.current_price}"
