import uuid
from enum import Enum
from tortoise import fields, models


class UserRole(str, Enum):
    admin = "admin"
    merchant = "merchant"
    bidder = "bidder"


class User(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    email = fields.CharField(max_length=255, unique=True)
    username = fields.CharField(max_length=255)
    full_name = fields.CharField(max_length=255, null=True)
    role = fields.CharEnumField(UserRole, default=UserRole.bidder)
    is_active = fields.BooleanField(default=True)
    is_deleted = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "users"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    def has_role(self, *roles: UserRole) -> bool:
        return self.role in roles
