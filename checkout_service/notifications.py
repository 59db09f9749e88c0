import logging

import httpx

from . import config

logger = logging.getLogger("checkout-service")


def get_http_client():
    return httpx.Client(timeout=config.HTTP_TIMEOUT)


def notify(event_type: str, recipient: str | None, subject: str, message: str, cid: str):
    if not (config.NOTIFICATION_SERVICE_URL and recipient):
        return
    try:
        with get_http_client() as client:
            client.post(
                f"{config.NOTIFICATION_SERVICE_URL}/v1/notifications/email",
                json={
                    "event_type": event_type,
                    "recipient": recipient,
                    "subject": subject,
                    "message": message,
                    "correlation_id": cid,
                },
                headers={"X-Correlation-Id": cid},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Failed to send order notification: {e}",
                       extra={"correlation_id": cid})
