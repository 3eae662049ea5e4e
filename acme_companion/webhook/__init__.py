"""Certificate delivery to the downstream proxy."""

from .dispatcher import WebhookDispatcher

__all__ = ['WebhookDispatcher']
