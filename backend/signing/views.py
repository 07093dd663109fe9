import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_ipv46_address
from django.http import HttpResponse
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .exceptions import InvalidRequest, NotFound, SigningError
from .models import SigningRequest, Webhook, WebhookEvent
from .serializers import (
    RejectPayloadSerializer, SignPayloadSerializer,
    SigningRequestCreateSerializer, SigningRequestDetailSerializer,
    SigningRequestListSerializer, WebhookEventSerializer, WebhookSerializer
)
from .services import (
    ArtifactStore, WebhookService,
    get_finalizer, get_signing_coordinator, get_signing_request_store,
    get_verification_service
)

logger = logging.getLogger(__name__)


class StandardResultsSetPagination(PageNumberPagination):
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 1000


class SigningErrorMixin:
    """Render service errors as ``{'error': ..., 'code': ...}`` responses."""

    def handle_exception(self, exc):
        if isinstance(exc, SigningError):
            if exc.status_code >= 500:
                logger.error(f"{type(exc).__name__}: {exc.message}")
            return Response(exc.as_dict(), status=exc.status_code)
        return super().handle_exception(exc)


def get_client_ip(request):
    """Extract client IP from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    if not ip:
        return None
    try:
        validate_ipv46_address(ip)
    except DjangoValidationError:
        return None
    return ip


class SigningRequestViewSet(SigningErrorMixin, viewsets.GenericViewSet):
    """ViewSet for signing requests and their state transitions."""
    permission_classes = [AllowAny]
    queryset = SigningRequest.objects.all()
    pagination_class = StandardResultsSetPagination

    def get_serializer_class(self):
        if self.action == 'create':
            return SigningRequestCreateSerializer
        if self.action == 'list':
            return SigningRequestListSerializer
        return SigningRequestDetailSerializer

    def create(self, request, *args, **kwargs):
        """Initiate a signing request."""
        serializer = SigningRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        signing_request = serializer.save()

        output = SigningRequestDetailSerializer(signing_request, context={'request': request})
        return Response(output.data, status=status.HTTP_201_CREATED)

    def list(self, request, *args, **kwargs):
        """List requests, optionally those a participant initiated or must sign."""
        status_filter = request.query_params.get('status')
        allowed = {choice for choice, _ in SigningRequest.STATUS_CHOICES}
        if status_filter and status_filter not in allowed:
            raise InvalidRequest(f"status must be one of {sorted(allowed)}", field='status')

        queryset = get_signing_coordinator().list_requests(
            participant_id=request.query_params.get('participant'),
            status=status_filter,
        ).prefetch_related('slots')

        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = SigningRequestListSerializer(page, many=True, context={'request': request})
            return self.get_paginated_response(serializer.data)

        serializer = SigningRequestListSerializer(queryset, many=True, context={'request': request})
        return Response(serializer.data)

    def retrieve(self, request, pk=None):
        signing_request = get_signing_request_store().get_request(pk)
        serializer = SigningRequestDetailSerializer(signing_request, context={'request': request})
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def sign(self, request, pk=None):
        """Submit one signer's signature."""
        payload = SignPayloadSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        result = get_signing_coordinator().sign(
            pk,
            payload.validated_data['signer_id'],
            payload.validated_data['signature'],
            ip_address=get_client_ip(request),
            user_agent=request.META.get('HTTP_USER_AGENT', ''),
        )
        return Response(result)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        """Reject the request on behalf of one required signer."""
        payload = RejectPayloadSerializer(data=request.data)
        payload.is_valid(raise_exception=True)

        signing_request = get_signing_coordinator().reject(
            pk,
            payload.validated_data['signer_id'],
            payload.validated_data['signature'],
            reason=payload.validated_data['reason'],
        )
        serializer = SigningRequestDetailSerializer(signing_request, context={'request': request})
        return Response(serializer.data)

    @action(detail=True, methods=['get'], url_path='status')
    def signing_status(self, request, pk=None):
        """Progress, per-signer timeline and finalization state."""
        return Response(get_signing_coordinator().status(pk))

    @action(detail=True, methods=['post'], url_path='fix-status')
    def fix_status(self, request, pk=None):
        """Recompute status from signer slots and re-queue finalization if needed."""
        return Response(get_signing_coordinator().fix_status(pk))

    @action(detail=True, methods=['post'], url_path='generate-final-artifact')
    def generate_final_artifact(self, request, pk=None):
        """Manually (re)generate the final artifact; idempotent."""
        return Response(get_finalizer().generate_final_artifact(pk))

    @action(detail=True, methods=['get'])
    def verify(self, request, pk=None):
        return Response(get_verification_service().verify_request(pk))

    @action(detail=True, methods=['get'])
    def artifact(self, request, pk=None):
        """Download the final signed PDF."""
        signing_request = get_signing_request_store().get_request(pk)
        if not signing_request.is_finalized:
            raise NotFound('Final artifact has not been generated yet')

        store = ArtifactStore()
        if not store.exists(signing_request.final_artifact_ref):
            raise NotFound('Final artifact file is missing')

        response = HttpResponse(
            store.fetch(signing_request.final_artifact_ref),
            content_type='application/pdf'
        )
        response['Content-Disposition'] = f'attachment; filename="signed_{signing_request.id}.pdf"'
        return response

    @action(detail=True, methods=['get'])
    def message(self, request, pk=None):
        """The exact message bytes (hex) a required signer must sign."""
        signer_id = request.query_params.get('signer_id')
        if not signer_id:
            raise InvalidRequest('signer_id query parameter is required', field='signer_id')

        message = get_signing_coordinator().signing_message(pk, signer_id)
        return Response({
            'request_id': str(pk),
            'signer_id': signer_id,
            'message': message.decode('utf-8'),
            'message_hex': message.hex(),
        })


class WebhookViewSet(viewsets.ModelViewSet):
    """ViewSet for webhook registrations."""
    permission_classes = [AllowAny]
    queryset = Webhook.objects.all()
    serializer_class = WebhookSerializer
    pagination_class = StandardResultsSetPagination

    @action(detail=True, methods=['get'])
    def events(self, request, pk=None):
        """Delivery history of a webhook."""
        webhook = self.get_object()
        events = webhook.webhook_events.prefetch_related('delivery_logs').order_by('-created_at')
        page = self.paginate_queryset(events)
        if page is not None:
            serializer = WebhookEventSerializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        return Response(WebhookEventSerializer(events, many=True).data)

    @action(detail=True, methods=['post'])
    def test(self, request, pk=None):
        """Deliver a test event synchronously to validate the configuration."""
        webhook = self.get_object()
        event_type = webhook.subscribed_events[0] if webhook.subscribed_events else Webhook.EVENTS[0][0]
        event = WebhookEvent.objects.create(
            webhook=webhook,
            event_type=event_type,
            payload={'test': True, 'message': 'Webhook test delivery'},
            status='pending'
        )
        delivered = WebhookService.deliver_event(event, retry_attempt=WebhookService.max_retries())
        event.refresh_from_db()
        return Response(
            {'delivered': delivered, 'event': WebhookEventSerializer(event).data},
            status=status.HTTP_200_OK if delivered else status.HTTP_502_BAD_GATEWAY
        )


class WebhookEventViewSet(viewsets.ReadOnlyModelViewSet):
    """Fired webhook events and their delivery logs."""
    permission_classes = [AllowAny]
    queryset = WebhookEvent.objects.select_related('webhook').prefetch_related('delivery_logs')
    serializer_class = WebhookEventSerializer
    pagination_class = StandardResultsSetPagination

    @action(detail=True, methods=['post'])
    def retry(self, request, pk=None):
        """Manually re-deliver an event."""
        from .tasks import retry_webhook_event

        event = self.get_object()
        if event.status == 'delivered':
            return Response(
                {'error': 'Event was already delivered'},
                status=status.HTTP_400_BAD_REQUEST
            )

        retry_webhook_event.delay(event.id)
        event.refresh_from_db()
        return Response(WebhookEventSerializer(event).data, status=status.HTTP_202_ACCEPTED)
