import secrets

from rest_framework import serializers

from .models import (
    FinalArtifact, SigningRequest, SignerSlot,
    Webhook, WebhookEvent, WebhookDeliveryLog
)
from .services.coordinator import compute_progress, get_signing_coordinator


WORKFLOW_SINGLE = 'single-signature'
WORKFLOW_MULTI = 'multi-signature'


class SignerSlotSerializer(serializers.ModelSerializer):
    """Serializer for signer slots."""

    class Meta:
        model = SignerSlot
        fields = [
            'signer_id',
            'order',
            'status',
            'signature',
            'signed_at',
            'rejected_at',
            'event_hash',
        ]
        read_only_fields = fields


class FinalArtifactSerializer(serializers.ModelSerializer):
    ref = serializers.CharField(read_only=True)

    class Meta:
        model = FinalArtifact
        fields = ['ref', 'signature_set_hash', 'sha256', 'size', 'created_at']
        read_only_fields = fields


class SigningRequestListSerializer(serializers.ModelSerializer):
    """Compact representation for list views."""
    request_id = serializers.UUIDField(source='id', read_only=True)
    progress = serializers.SerializerMethodField()

    class Meta:
        model = SigningRequest
        fields = [
            'request_id',
            'status',
            'signing_type',
            'document_hash',
            'document_name',
            'initiator_id',
            'required_signer_ids',
            'progress',
            'created_at',
            'completed_at',
            'final_artifact_ref',
        ]
        read_only_fields = fields

    def get_progress(self, obj):
        return compute_progress(list(obj.slots.all()))


class SigningRequestDetailSerializer(SigningRequestListSerializer):
    slots = SignerSlotSerializer(many=True, read_only=True)
    artifacts = FinalArtifactSerializer(many=True, read_only=True)
    workflow = serializers.SerializerMethodField()

    class Meta(SigningRequestListSerializer.Meta):
        fields = SigningRequestListSerializer.Meta.fields + [
            'workflow',
            'description',
            'rejected_at',
            'rejection_reason',
            'finalized_at',
            'finalization_attempts',
            'finalization_error',
            'slots',
            'artifacts',
        ]
        read_only_fields = fields

    def get_workflow(self, obj):
        if len(obj.required_signer_ids) == 1:
            return WORKFLOW_SINGLE
        return WORKFLOW_MULTI


class SigningRequestCreateSerializer(serializers.Serializer):
    """
    Initiate payload.

    ``workflow`` tags the request at the API boundary only; the coordinator
    treats a single-signature request as a request with one signer.
    """
    initiator_id = serializers.CharField(max_length=255)
    document_hash = serializers.CharField(max_length=64, required=False, allow_blank=True)
    file = serializers.FileField(required=False)
    signer_ids = serializers.ListField(
        child=serializers.CharField(max_length=255),
        allow_empty=False
    )
    signing_type = serializers.ChoiceField(
        choices=SigningRequest.SIGNING_TYPE_CHOICES,
        default=SigningRequest.SIGNING_PARALLEL
    )
    workflow = serializers.ChoiceField(
        choices=[WORKFLOW_SINGLE, WORKFLOW_MULTI],
        default=WORKFLOW_MULTI
    )
    description = serializers.CharField(required=False, allow_blank=True, default='')

    def validate(self, data):
        if not data.get('document_hash') and not data.get('file'):
            raise serializers.ValidationError('Provide document_hash, file, or both')

        if data['workflow'] == WORKFLOW_SINGLE and len(data['signer_ids']) != 1:
            raise serializers.ValidationError({
                'signer_ids': 'A single-signature workflow names exactly one signer'
            })
        return data

    def create(self, validated_data):
        document = validated_data.get('file')
        return get_signing_coordinator().initiate(
            initiator_id=validated_data['initiator_id'],
            document_hash=validated_data.get('document_hash') or None,
            signer_ids=validated_data['signer_ids'],
            signing_type=validated_data['signing_type'],
            description=validated_data.get('description', ''),
            document=document,
            document_name=document.name if document else '',
        )


class SignPayloadSerializer(serializers.Serializer):
    signer_id = serializers.CharField(max_length=255)
    signature = serializers.CharField()


class RejectPayloadSerializer(SignPayloadSerializer):
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class WebhookDeliveryLogSerializer(serializers.ModelSerializer):
    """Serializer for webhook delivery logs."""

    class Meta:
        model = WebhookDeliveryLog
        fields = [
            'id',
            'status_code',
            'response_body',
            'error_message',
            'duration_ms',
            'created_at',
        ]
        read_only_fields = fields


class WebhookEventSerializer(serializers.ModelSerializer):
    """Serializer for webhook events."""
    delivery_logs = WebhookDeliveryLogSerializer(many=True, read_only=True)

    class Meta:
        model = WebhookEvent
        fields = [
            'id',
            'webhook',
            'event_type',
            'payload',
            'status',
            'attempt_count',
            'last_error',
            'created_at',
            'delivered_at',
            'next_retry_at',
            'delivery_logs',
        ]
        read_only_fields = fields


class WebhookSerializer(serializers.ModelSerializer):
    """Serializer for webhooks."""
    events_list = serializers.SerializerMethodField()
    success_rate = serializers.SerializerMethodField()

    class Meta:
        model = Webhook
        fields = [
            'id',
            'url',
            'subscribed_events',
            'events_list',
            'secret',
            'is_active',
            'created_at',
            'updated_at',
            'last_triggered_at',
            'total_deliveries',
            'successful_deliveries',
            'failed_deliveries',
            'success_rate',
        ]
        read_only_fields = [
            'id',
            'secret',
            'created_at',
            'updated_at',
            'last_triggered_at',
            'total_deliveries',
            'successful_deliveries',
            'failed_deliveries',
        ]

    def validate_subscribed_events(self, value):
        known = dict(Webhook.EVENTS)
        if not isinstance(value, list) or not value:
            raise serializers.ValidationError('Subscribe to at least one event')
        unknown = [event for event in value if event not in known]
        if unknown:
            raise serializers.ValidationError(f"Unknown events: {', '.join(map(str, unknown))}")
        return value

    def get_events_list(self, obj):
        """Return human-readable event names."""
        return [
            dict(Webhook.EVENTS).get(event, event)
            for event in obj.subscribed_events
        ]

    def get_success_rate(self, obj):
        """Calculate delivery success rate."""
        if obj.total_deliveries == 0:
            return None
        return round((obj.successful_deliveries / obj.total_deliveries) * 100, 2)

    def create(self, validated_data):
        """Auto-generate secret on creation."""
        validated_data['secret'] = secrets.token_urlsafe(32)
        return super().create(validated_data)
