from tortoise import fields
from tortoise.models import Model
from uuid import uuid4


class Bid(Model):
    id = fields.UUIDField(pk=True, default=uuid4)

    bidder = fields.ForeignKeyField("models.User", related_name="bids")
    auction = fields.ForeignKeyField("models.Auction", related_name="bids")

    amount = fields.DecimalField(max_digits=12, decimal_places=2)

    is_deleted = fields.BooleanField(default=False)
    deleted_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "bids"
        ordering = ["created_at"]

    async def save(self, *args, **kwargs):
        if self.amount <= 0:
            raise ValueError("Amount must be greater than 0")
        await super().save(*args, **kwargs)
