import uuid
from tortoise import fields, models

from mspark.enums.gem_status import GemStatus


class Gem(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    name = fields.CharField(max_length=255)
    type = fields.CharField(max_length=255, default="unknown")
    color = fields.CharField(max_length=100)
    images = fields.JSONField(default=list)
    price = fields.DecimalField(max_digits=12, decimal_places=2, null=True)
    status = fields.CharEnumField(GemStatus, default=GemStatus.pending)

    merchant = fields.ForeignKeyField("models.User", related_name="gems")

    is_deleted = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "gems"

    def __str__(self):
        return f"Gem {self.id} - {self.name} ({self.status})"
