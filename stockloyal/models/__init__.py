"""
Database models - import all models here so Alembic can discover them.
"""
from stockloyal.models.webhook_log import WebhookLog

__all__ = [
    "WebhookLog",
]
