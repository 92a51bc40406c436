from tortoise import fields

from flowvault.config import settings
from .base import BaseModel


class FlowImage(BaseModel):
    storage_path = fields.CharField(max_length=1024, unique=True)
    public_url = fields.CharField(max_length=2048)
    metadata = fields.JSONField(null=True)

    class Meta:
        table = settings.SYNC_TABLE
