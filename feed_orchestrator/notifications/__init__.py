"""Outbound notifications (webhooks)."""

from feed_orchestrator.notifications.webhooks import WebhookNotifier

__all__ = ["WebhookNotifier"]
