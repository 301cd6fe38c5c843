import uuid
from decimal import Decimal
from enum import Enum
from tortoise import fields, models


class MsparkType(str, Enum):
    primary = "primary"
    secondary = "secondary"


class Mspark(models.Model):
    """Platform operator record, holds the fees deducted from merchant payouts"""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    type = fields.CharEnumField(MsparkType, default=MsparkType.primary, unique=True)
    platform_fee = fields.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0.05"))
    verification_fee = fields.DecimalField(max_digits=5, decimal_places=4, default=Decimal("0.02"))
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "mspark"
