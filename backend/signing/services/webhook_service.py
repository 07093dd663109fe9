import hashlib
import hmac
import json
import logging
import time
from datetime import timedelta

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..models import Webhook, WebhookEvent, WebhookDeliveryLog

logger = logging.getLogger(__name__)


class WebhookDeliveryError(Exception):
    """Non-2xx response from a webhook endpoint."""


class WebhookService:
    """Service for managing webhook events and deliveries."""

    # Retry delays (in seconds)
    RETRY_DELAYS = [60, 300, 900]  # 1 min, 5 min, 15 min

    @staticmethod
    def max_retries():
        return getattr(settings, 'WEBHOOK_MAX_RETRIES', 3)

    @staticmethod
    def request_timeout():
        return getattr(settings, 'WEBHOOK_REQUEST_TIMEOUT', 10)

    @staticmethod
    def trigger_event(event_type: str, payload: dict):
        """
        Record a webhook event for every active subscriber and queue delivery.

        Delivery is queued after the surrounding transaction commits so a
        receiver never hears about state that was rolled back.

        Returns:
            list of WebhookEvent
        """
        all_webhooks = Webhook.objects.filter(is_active=True)

        # Filter in Python (compatible with SQLite)
        matching_webhooks = [
            webhook for webhook in all_webhooks
            if event_type in webhook.subscribed_events
        ]
        if not matching_webhooks:
            return []

        logger.info(f"Triggering event '{event_type}' for {len(matching_webhooks)} webhook(s)")

        events = []
        for webhook in matching_webhooks:
            event = WebhookEvent.objects.create(
                webhook=webhook,
                event_type=event_type,
                payload=payload,
                status='pending'
            )
            events.append(event)
            transaction.on_commit(
                lambda event_id=event.id: WebhookService.enqueue_delivery(event_id)
            )
        return events

    @staticmethod
    def enqueue_delivery(event_id, retry_attempt=0, countdown=None):
        from ..tasks import deliver_webhook_event

        if countdown:
            deliver_webhook_event.apply_async(args=[event_id, retry_attempt], countdown=countdown)
        else:
            deliver_webhook_event.delay(event_id, retry_attempt)

    @staticmethod
    def deliver_event(event: WebhookEvent, retry_attempt: int = 0):
        """
        Attempt to deliver a webhook event to its external URL.

        Args:
            event: WebhookEvent instance
            retry_attempt: Current retry attempt number

        Returns:
            bool: True if delivered
        """
        webhook = event.webhook

        payload = {
            **event.payload,
            '_webhook_id': webhook.id,
            '_event_type': event.event_type,
            '_timestamp': timezone.now().isoformat(),
        }
        signature = WebhookService.generate_signature(webhook, payload)

        headers = {
            'Content-Type': 'application/json',
            'X-Webhook-Signature': signature,
            'X-Webhook-Event': event.event_type,
            'X-Webhook-Delivery': str(event.id),
        }

        try:
            start_time = time.time()
            response = requests.post(
                webhook.url,
                json=payload,
                headers=headers,
                timeout=WebhookService.request_timeout()
            )
            duration_ms = int((time.time() - start_time) * 1000)

            WebhookDeliveryLog.objects.create(
                event=event,
                status_code=response.status_code,
                response_body=response.text[:1000],
                duration_ms=duration_ms
            )

            if 200 <= response.status_code < 300:
                event.status = 'delivered'
                event.delivered_at = timezone.now()
                event.attempt_count = retry_attempt + 1
                event.last_error = ''
                event.next_retry_at = None
                event.save()

                WebhookService.increment_delivery_attempt(webhook, success=True)
                logger.info(f"Webhook {webhook.id} delivered {event.event_type} (HTTP {response.status_code})")
                return True

            raise WebhookDeliveryError(f"HTTP {response.status_code}: {response.text[:200]}")

        except requests.exceptions.Timeout:
            error_msg = "Request timeout"
        except requests.exceptions.ConnectionError:
            error_msg = "Connection error"
        except (requests.exceptions.RequestException, WebhookDeliveryError) as e:
            error_msg = str(e)

        logger.warning(f"Webhook {webhook.id} delivery failed: {error_msg}")

        if error_msg in ("Request timeout", "Connection error"):
            WebhookDeliveryLog.objects.create(event=event, error_message=error_msg)

        event.last_error = error_msg
        event.attempt_count = retry_attempt + 1

        if retry_attempt < WebhookService.max_retries():
            retry_delay = WebhookService.RETRY_DELAYS[
                min(retry_attempt, len(WebhookService.RETRY_DELAYS) - 1)
            ]
            event.status = 'retrying'
            event.next_retry_at = timezone.now() + timedelta(seconds=retry_delay)
            event.save()

            WebhookService.enqueue_delivery(event.id, retry_attempt + 1, countdown=retry_delay)
            logger.info(f"Retrying webhook {webhook.id} in {retry_delay}s")
        else:
            event.status = 'failed'
            event.next_retry_at = None
            event.save()

            WebhookService.increment_delivery_attempt(webhook, success=False)
            logger.error(f"Webhook {webhook.id} failed after {WebhookService.max_retries()} retries")
        return False

    @staticmethod
    def generate_signature(webhook, payload: dict) -> str:
        """
        Generate HMAC-SHA256 signature for webhook payload.

        Args:
            webhook: Webhook instance
            payload: dict, event payload

        Returns:
            str: Hexadecimal signature
        """
        payload_str = json.dumps(payload, sort_keys=True)
        return hmac.new(
            webhook.secret.encode(),
            payload_str.encode(),
            hashlib.sha256
        ).hexdigest()

    @staticmethod
    def increment_delivery_attempt(webhook, success: bool):
        """
        Track delivery statistics.

        Args:
            webhook: Webhook instance
            success: bool, whether delivery was successful
        """
        webhook.total_deliveries += 1
        if success:
            webhook.successful_deliveries += 1
        else:
            webhook.failed_deliveries += 1
        webhook.last_triggered_at = timezone.now()
        webhook.save(update_fields=[
            'total_deliveries',
            'successful_deliveries',
            'failed_deliveries',
            'last_triggered_at'
        ])
