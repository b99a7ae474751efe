"""
Billing Webhook Azure Function
HTTP-Triggered function that applies subscription events to a user's quota record.

The function app root is functions/; the app package is installed next to it
through functions/requirements.txt before publishing.
"""
import azure.functions as func
import hmac
import json
import logging
import os

from app.storage import StorageService
from app.studio.errors import StorageUnavailable
from app.studio.models import SubscriptionTier
from app.studio.quota import QuotaStore

logger = logging.getLogger(__name__)

UPGRADE_EVENTS = {"subscription.activated", "subscription.renewed"}
CANCEL_EVENTS = {"subscription.canceled"}
DEFAULT_DURATION_DAYS = 30


def _json_response(body: dict, status_code: int) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(body),
        status_code=status_code,
        mimetype="application/json"
    )


def _authorized(req: func.HttpRequest) -> bool:
    secret = os.environ.get("BILLING_WEBHOOK_SECRET")
    if not secret:
        logger.error("BILLING_WEBHOOK_SECRET not configured; rejecting webhook")
        return False
    provided = req.headers.get("X-Billing-Secret") or ""
    return hmac.compare_digest(provided.encode(), secret.encode())


def get_quota_store() -> QuotaStore:
    return QuotaStore(StorageService())


def main(req: func.HttpRequest) -> func.HttpResponse:
    """
    HTTP Trigger handler for billing events.

    Expected JSON body:
    {
        "type": "subscription.activated",
        "user_id": "user-123",
        "tier": "pro",
        "duration_days": 30
    }
    """
    logger.info("Billing webhook triggered.")

    if not _authorized(req):
        return _json_response({"error": "Unauthorized"}, 401)

    try:
        event = req.get_json()
    except ValueError:
        return _json_response({"error": "Invalid JSON body"}, 400)
    if not isinstance(event, dict):
        return _json_response({"error": "Event must be a JSON object"}, 400)

    event_type = event.get("type")
    user_id = event.get("user_id")
    if not event_type or not user_id:
        return _json_response({"error": "type and user_id are required"}, 400)

    if event_type not in UPGRADE_EVENTS and event_type not in CANCEL_EVENTS:
        logger.info(f"Unhandled event type: {event_type}")
        return _json_response({"received": True, "handled": False}, 200)

    store = get_quota_store()
    try:
        if event_type in CANCEL_EVENTS:
            record = store.cancel(user_id)
        else:
            tier = SubscriptionTier(event.get("tier", ""))
            duration_days = int(event.get("duration_days", DEFAULT_DURATION_DAYS))
            record = store.apply_billing_event(user_id, tier, duration_days)
    except StorageUnavailable as e:
        logger.error(f"Billing event for {user_id} not applied: {e}")
        return _json_response({"error": str(e)}, 503)
    except (ValueError, TypeError) as e:
        return _json_response({"error": f"Invalid event: {e}"}, 400)

    return _json_response({"received": True, "handled": True, "quota": record.to_dict()}, 200)
