import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.utils import timezone

from .exceptions import AlreadyFinalized, FinalizationFailed, NotCompleted, NotFound, SigningError
from .models import WebhookEvent

logger = logging.getLogger(__name__)


@shared_task
def finalize_signing_request(request_id: str):
    """
    Celery task producing the final artifact of a completed request.

    Failures are recorded on the request and logged; they never reach the
    signer whose signature completed the request.
    """
    from .services.finalizer import get_finalizer

    try:
        return get_finalizer().finalize(request_id)
    except AlreadyFinalized as e:
        logger.info(f"Signing request {request_id} already finalized")
        return e.artifact_ref
    except (NotFound, NotCompleted) as e:
        logger.warning(f"Skipping finalization of {request_id}: {e.message}")
    except FinalizationFailed as e:
        logger.error(f"Finalization of {request_id} failed: {e.message}")
    return None


def reconcile(grace_seconds=None):
    """
    Repair requests left behind by a crash between steps.

    Pending requests whose slots are all signed are completed, and completed
    requests without an artifact for longer than the grace period are
    re-queued for finalization.

    Returns:
        dict: {checked, repaired, requeued, errors}
    """
    from .services.coordinator import get_signing_coordinator
    from .services.store import get_signing_request_store

    if grace_seconds is None:
        grace_seconds = settings.SIGNING_STUCK_GRACE_SECONDS

    store = get_signing_request_store()
    coordinator = get_signing_coordinator()
    cutoff = timezone.now() - timedelta(seconds=grace_seconds)

    candidate_ids = list(store.find_all_signed_pending().values_list('pk', flat=True))
    candidate_ids += [
        pk for pk in store.find_unfinalized(cutoff).values_list('pk', flat=True)
        if pk not in candidate_ids
    ]

    summary = {'checked': len(candidate_ids), 'repaired': 0, 'requeued': 0, 'errors': 0}
    for request_id in candidate_ids:
        try:
            result = coordinator.fix_status(request_id)
        except SigningError as e:
            summary['errors'] += 1
            logger.error(f"Reconciliation of {request_id} failed: {e.message}")
            continue
        if result['status_fixed']:
            summary['repaired'] += 1
        if result['finalization_queued']:
            summary['requeued'] += 1

    if candidate_ids:
        logger.info(
            f"Reconciled {summary['checked']} request(s): {summary['repaired']} repaired, "
            f"{summary['requeued']} finalization(s) queued"
        )
    return summary


@shared_task
def reconcile_stuck_requests():
    """Periodic (beat) reconciliation of stuck signing requests."""
    return reconcile()


# Celery tasks for async webhook delivery
@shared_task
def deliver_webhook_event(event_id: int, retry_attempt: int = 0):
    """Celery task to deliver webhook event."""
    from .services.webhook_service import WebhookService

    try:
        event = WebhookEvent.objects.select_related('webhook').get(id=event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(f"WebhookEvent {event_id} not found")
        return False
    return WebhookService.deliver_event(event, retry_attempt=retry_attempt)


@shared_task
def retry_webhook_event(event_id: int):
    """Celery task to manually re-deliver a failed webhook event."""
    from .services.webhook_service import WebhookService

    try:
        event = WebhookEvent.objects.select_related('webhook').get(id=event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(f"WebhookEvent {event_id} not found")
        return False
    # Manual retries start a fresh retry count
    return WebhookService.deliver_event(event, retry_attempt=0)
