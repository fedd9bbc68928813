"""
Webhook Notifier - Best-effort delivery of job completion events.

Failures are logged and never raised: delivery must not block or fail
job completion.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from feed_orchestrator.config import WEBHOOK_TIMEOUT_SECS
from feed_orchestrator.feeds.store import WebhookStore

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts JSON event payloads to a user's active webhooks."""

    def __init__(
        self,
        store: WebhookStore,
        timeout_seconds: int = WEBHOOK_TIMEOUT_SECS,
        session: Optional[requests.Session] = None,
    ):
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def notify(self, user_id: Optional[str], payload: Dict[str, Any]) -> Dict[str, int]:
        """
        Deliver an event to every active webhook of the user.

        Returns:
            {"delivered": n, "failed": m}
        """
        results = {"delivered": 0, "failed": 0}
        if not user_id:
            return results

        event = payload.get("event", "")
        body = {**payload, "timestamp": datetime.utcnow().isoformat() + "Z"}

        try:
            webhooks = self.store.list_active_for_user(user_id)
        except Exception as e:
            logger.error("Failed to load webhooks for user %s: %s", user_id, e)
            return results

        for webhook in webhooks:
            if not webhook.wants(event):
                continue
            try:
                resp = self.session.post(
                    webhook.url,
                    json=body,
                    headers={"Content-Type": "application/json", **webhook.headers},
                    timeout=self.timeout_seconds,
                )
                resp.raise_for_status()
                self.store.record_trigger(webhook.id, {"event": event, "feedId": payload.get("feedId")})
                results["delivered"] += 1
            except Exception as e:
                logger.warning("Webhook %s failed for event %s: %s", webhook.id, event, e)
                results["failed"] += 1

        logger.info("Webhooks for user %s: delivered=%d failed=%d",
                    user_id, results["delivered"], results["failed"])
        return results


__all__ = ["WebhookNotifier"]
