import uuid

from django.conf import settings
from django.db import models
from django.core.validators import MinLengthValidator, RegexValidator


SHA256_VALIDATOR = RegexValidator(
    regex=r'^[0-9a-f]{64}$',
    message='Must be a lowercase hex SHA256 digest',
)


def request_document_upload_path(instance, filename):
    """Original document bytes are grouped by signing request."""
    return f'signing/{instance.id}/original/{filename}'


def final_artifact_upload_path(instance, filename):
    """
    Final artifacts live under SIGNING_ARTIFACT_UPLOAD_DIR, one folder per
    request, named after the signature-set hash they were built from.
    """
    base = getattr(settings, 'SIGNING_ARTIFACT_UPLOAD_DIR', 'artifacts')
    return f'{base}/{instance.request_id}/{instance.signature_set_hash}.pdf'


class SigningRequest(models.Model):
    """
    SigningRequest binds one document hash to a fixed set of required signers.

    The signer list and document hash never change after creation. ``status``,
    ``completed_at`` and the finalization fields are only mutated by the
    coordinator and finalizer through conditional updates guarded by
    ``version``.
    """
    STATUS_PENDING = 'pending'
    STATUS_COMPLETED = 'completed'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    SIGNING_PARALLEL = 'parallel'
    SIGNING_SEQUENTIAL = 'sequential'
    SIGNING_TYPE_CHOICES = [
        (SIGNING_PARALLEL, 'Any order'),
        (SIGNING_SEQUENTIAL, 'Sequential'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    document_hash = models.CharField(
        max_length=64,
        validators=[SHA256_VALIDATOR],
        help_text="SHA256 hash of the original document bytes"
    )
    initiator_id = models.CharField(max_length=255, db_index=True)
    required_signer_ids = models.JSONField(
        help_text="Ordered list of signer identities, fixed at creation"
    )
    signing_type = models.CharField(
        max_length=20,
        choices=SIGNING_TYPE_CHOICES,
        default=SIGNING_PARALLEL
    )
    description = models.TextField(blank=True)
    document = models.FileField(
        upload_to=request_document_upload_path,
        null=True,
        blank=True,
        help_text="Original document bytes (optional, used for the final PDF)"
    )
    document_name = models.CharField(max_length=255, blank=True)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True)

    # Finalization protocol
    final_artifact_ref = models.CharField(max_length=500, null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)
    finalization_attempts = models.PositiveIntegerField(default=0)
    finalization_error = models.TextField(blank=True)

    # Optimistic concurrency token, bumped by every conditional update
    version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='signing_sig_status_4b1f0e_idx'),
        ]

    def __str__(self):
        return f"SigningRequest {self.id} ({self.status})"

    @property
    def is_pending(self):
        return self.status == self.STATUS_PENDING

    @property
    def is_finalized(self):
        return bool(self.final_artifact_ref)


class SignerSlot(models.Model):
    """
    One required signer of a SigningRequest.

    A slot goes ``pending -> signed`` or ``pending -> rejected`` exactly once.
    """
    STATUS_PENDING = 'pending'
    STATUS_SIGNED = 'signed'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SIGNED, 'Signed'),
        (STATUS_REJECTED, 'Rejected'),
    ]

    request = models.ForeignKey(
        SigningRequest,
        on_delete=models.CASCADE,
        related_name='slots'
    )
    signer_id = models.CharField(max_length=255, validators=[MinLengthValidator(1)])
    order = models.PositiveIntegerField(help_text="Position in required_signer_ids")
    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )
    signature = models.TextField(null=True, blank=True)
    signed_at = models.DateTimeField(null=True, blank=True)
    rejected_at = models.DateTimeField(null=True, blank=True)

    # Audit metadata
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    event_hash = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="SHA256 of this slot's signing event for tamper detection"
    )

    version = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['request', 'order']
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'signer_id'],
                name='unique_signer_per_request'
            ),
            models.UniqueConstraint(
                fields=['request', 'order'],
                name='unique_order_per_request'
            ),
        ]

    def __str__(self):
        return f"{self.signer_id[:16]} #{self.order} ({self.status}) - {self.request_id}"


class FinalArtifact(models.Model):
    """
    Final signed artifact, keyed by (request, signature_set_hash).

    The unique key is what makes finalization idempotent: a second build for
    the same signature set resolves to the existing row.
    """
    request = models.ForeignKey(
        SigningRequest,
        on_delete=models.CASCADE,
        related_name='artifacts'
    )
    signature_set_hash = models.CharField(max_length=64, validators=[SHA256_VALIDATOR])
    file = models.FileField(upload_to=final_artifact_upload_path, max_length=500)
    sha256 = models.CharField(
        max_length=64,
        help_text="SHA256 hash of the stored artifact bytes"
    )
    size = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['request', 'signature_set_hash'],
                name='unique_artifact_per_signature_set'
            ),
        ]

    def __str__(self):
        return f"Artifact {self.signature_set_hash[:12]} for {self.request_id}"

    @property
    def ref(self):
        return self.file.name


class Webhook(models.Model):
    """
    Webhook registration for external systems to listen to signing events.
    """
    EVENTS = [
        ('signing_request.created', 'Signing Request Created'),
        ('signing_request.signed', 'Signature Accepted'),
        ('signing_request.completed', 'Signing Request Completed'),
        ('signing_request.rejected', 'Signing Request Rejected'),
        ('signing_request.finalized', 'Final Artifact Generated'),
        ('signing_request.finalization_failed', 'Finalization Failed'),
    ]

    url = models.URLField(
        help_text="External endpoint URL to receive webhook events"
    )
    subscribed_events = models.JSONField(
        default=list,
        help_text="List of events to subscribe to (e.g., ['signing_request.completed'])"
    )
    secret = models.CharField(
        max_length=255,
        unique=True,
        help_text="Secret key for webhook signature verification (HMAC-SHA256)"
    )
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    last_triggered_at = models.DateTimeField(null=True, blank=True)

    total_deliveries = models.PositiveIntegerField(default=0)
    successful_deliveries = models.PositiveIntegerField(default=0)
    failed_deliveries = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'created_at'], name='signing_web_is_acti_7c2d41_idx'),
        ]

    def __str__(self):
        return f"Webhook: {self.url}"


class WebhookEvent(models.Model):
    """
    Record of each webhook event fired (for audit trail and debugging).
    """
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('delivered', 'Delivered'),
        ('failed', 'Failed'),
        ('retrying', 'Retrying'),
    ]

    webhook = models.ForeignKey(
        Webhook,
        on_delete=models.CASCADE,
        related_name='webhook_events'
    )
    event_type = models.CharField(max_length=50, choices=Webhook.EVENTS)
    payload = models.JSONField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    attempt_count = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    next_retry_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['webhook', 'status', 'created_at'], name='signing_web_webhook_2e9a10_idx'),
            models.Index(fields=['event_type', 'created_at'], name='signing_web_event_t_8f3c52_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} - {self.status}"


class WebhookDeliveryLog(models.Model):
    """
    Detailed log of each delivery attempt.
    """
    event = models.ForeignKey(
        WebhookEvent,
        on_delete=models.CASCADE,
        related_name='delivery_logs'
    )
    status_code = models.PositiveIntegerField(null=True, blank=True)
    response_body = models.TextField(blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    duration_ms = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['event', 'created_at'], name='signing_web_event_i_5d7b93_idx'),
        ]

    def __str__(self):
        return f"Delivery Log - {self.event} (HTTP {self.status_code})"
