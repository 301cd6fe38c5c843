import uuid
from tortoise import fields, models

from mspark.enums.wallet_status import WalletStatus


class Wallet(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="wallets")
    status = fields.CharEnumField(WalletStatus, default=WalletStatus.pending)

    platform_title = fields.CharField(max_length=100)
    currency_title = fields.CharField(max_length=100)
    currency_symbol = fields.CharField(max_length=10)
    crypto_address = fields.CharField(max_length=255)

    # CoinGate beneficiary references
    gateway_beneficiary_id = fields.CharField(max_length=64, null=True)
    gateway_payout_setting_id = fields.CharField(max_length=64)

    is_deleted = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "wallets"
