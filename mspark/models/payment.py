import uuid
from tortoise import fields, models

from mspark.enums.payment_type import PaymentType
from mspark.enums.payment_status import PaymentStatus


class Payment(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)

    # Payment details
    amount = fields.DecimalField(max_digits=20, decimal_places=8)
    price_currency = fields.CharField(max_length=10)
    receive_currency = fields.CharField(max_length=10)
    description = fields.CharField(max_length=500)
    payment_type = fields.CharEnumField(PaymentType)
    payment_status = fields.CharEnumField(PaymentStatus, default=PaymentStatus.pending)
    transaction_date = fields.DatetimeField(auto_now_add=True)

    # Related entities
    bidder = fields.ForeignKeyField("models.User", related_name="payments", null=True)
    merchant = fields.ForeignKeyField("models.User", related_name="payouts", null=True)
    auction = fields.ForeignKeyField("models.Auction", related_name="payments", null=True)

    # Gateway reference
    gateway_id = fields.CharField(max_length=64, unique=True, null=True)
    payment_link = fields.CharField(max_length=512, null=True)
    metadata = fields.JSONField(default=dict)

    # Timestamps
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "payments"
        ordering = ["-created_at"]

    def __str__(self):
        return f"Payment {self.id} - {self.payment_type} {self.amount} {self.price_currency} ({self.payment_status})"
