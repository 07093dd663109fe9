"""
backend/signing/urls.py

"""

# ----------------------------
# Django imports
# ----------------------------
from django.urls import path

# ----------------------------
# Local view imports
# ----------------------------
from .views import (
    SigningRequestViewSet,
    WebhookViewSet,
    WebhookEventViewSet
)

# App namespace for reverse() lookups
app_name = 'signing'

# ----------------------------
# Signing request routes
# ----------------------------
urlpatterns = [
    path('requests/', SigningRequestViewSet.as_view({
        'get': 'list',
        'post': 'create'
    }), name='request-list'),
    # Initiate a signing request (hash and/or uploaded file plus ordered signer ids),
    # or list requests filtered by ?participant=<id>&status=<status>.

    path('requests/<uuid:pk>/', SigningRequestViewSet.as_view({
        'get': 'retrieve'
    }), name='request-detail'),
    # Request detail with signer slots and stored artifacts.

    path('requests/<uuid:pk>/sign/', SigningRequestViewSet.as_view({
        'post': 'sign'
    }), name='request-sign'),
    # Submit {signer_id, signature}. The caller that completes the set queues finalization.

    path('requests/<uuid:pk>/reject/', SigningRequestViewSet.as_view({
        'post': 'reject'
    }), name='request-reject'),
    # Reject with a signature over the rejection message; cancels the whole request.

    path('requests/<uuid:pk>/status/', SigningRequestViewSet.as_view({
        'get': 'signing_status'
    }), name='request-status'),
    # Read-only progress report used by polling clients.

    path('requests/<uuid:pk>/fix-status/', SigningRequestViewSet.as_view({
        'post': 'fix_status'
    }), name='request-fix-status'),
    # Repair a stuck request from its slot states. Safe to call repeatedly.

    path('requests/<uuid:pk>/generate-final-artifact/', SigningRequestViewSet.as_view({
        'post': 'generate_final_artifact'
    }), name='request-generate-final-artifact'),
    # Manual, idempotent finalization; returns the existing artifact if there is one.

    path('requests/<uuid:pk>/verify/', SigningRequestViewSet.as_view({
        'get': 'verify'
    }), name='request-verify'),
    # Re-verify every signature, event hash and the stored artifact bytes.

    path('requests/<uuid:pk>/artifact/', SigningRequestViewSet.as_view({
        'get': 'artifact'
    }), name='request-artifact'),
    # Download the final signed PDF.

    path('requests/<uuid:pk>/message/', SigningRequestViewSet.as_view({
        'get': 'message'
    }), name='request-message'),
    # Exact message a signer must sign (?signer_id=<id>), for wallet front ends.
]

# ----------------------------
# Webhook-related routes (grouped separately for clarity)
# ----------------------------
webhook_urls = [
    path('webhooks/', WebhookViewSet.as_view({'get': 'list', 'post': 'create'}), name='webhook-list'),
    # Create or list webhooks. Webhooks allow external services to receive event notifications.

    path('webhooks/<int:pk>/', WebhookViewSet.as_view({'get': 'retrieve', 'patch': 'partial_update', 'delete': 'destroy'}), name='webhook-detail'),
    # Retrieve, update or delete a webhook configuration.

    path('webhooks/<int:pk>/events/', WebhookViewSet.as_view({'get': 'events'}), name='webhook-events'),
    # List events associated with a webhook (delivery history and payloads).

    path('webhooks/<int:pk>/test/', WebhookViewSet.as_view({'post': 'test'}), name='webhook-test'),
    # Deliver a test event to validate webhook configuration.

    path('webhook-events/<int:pk>/retry/', WebhookEventViewSet.as_view({'post': 'retry'}), name='webhook-event-retry'),
    # Manually re-deliver a failed webhook event.

    path('webhook-events/', WebhookEventViewSet.as_view({'get': 'list'}), name='webhook-event-list'),
    path('webhook-events/<int:pk>/', WebhookEventViewSet.as_view({'get': 'retrieve'}), name='webhook-event-detail'),
    # Audit trail of fired events with their delivery logs.
]

# Combine primary urlpatterns with webhook routes
urlpatterns += webhook_urls
