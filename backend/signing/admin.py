from django.contrib import admin, messages

from .exceptions import SigningError
from .models import (
    FinalArtifact, SigningRequest, SignerSlot,
    Webhook, WebhookEvent, WebhookDeliveryLog
)
from .services import get_finalizer, get_signing_coordinator


class SignerSlotInline(admin.TabularInline):
    model = SignerSlot
    extra = 0
    can_delete = False
    fields = ('order', 'signer_id', 'status', 'signed_at', 'rejected_at', 'event_hash')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


class FinalArtifactInline(admin.TabularInline):
    model = FinalArtifact
    extra = 0
    can_delete = False
    fields = ('file', 'signature_set_hash', 'sha256', 'size', 'created_at')
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SigningRequest)
class SigningRequestAdmin(admin.ModelAdmin):
    list_display = ('id', 'status', 'signing_type', 'initiator_short', 'created_at', 'completed_at', 'is_finalized')
    list_filter = ('status', 'signing_type', 'created_at')
    search_fields = ('id', 'document_hash', 'initiator_id', 'slots__signer_id')
    readonly_fields = (
        'id', 'document', 'document_name', 'document_hash', 'description',
        'initiator_id', 'required_signer_ids', 'signing_type',
        'status', 'created_at', 'completed_at', 'rejected_at', 'rejection_reason',
        'final_artifact_ref', 'finalized_at', 'finalization_attempts',
        'finalization_error', 'version',
    )
    inlines = [SignerSlotInline, FinalArtifactInline]
    actions = ['repair_status', 'generate_final_artifact']
    fieldsets = (
        ('Request', {
            'fields': ('id', 'initiator_id', 'signing_type', 'description', 'required_signer_ids')
        }),
        ('Document', {
            'fields': ('document', 'document_name', 'document_hash')
        }),
        ('Status', {
            'fields': ('status', 'created_at', 'completed_at', 'rejected_at', 'rejection_reason')
        }),
        ('Finalization', {
            'fields': ('final_artifact_ref', 'finalized_at', 'finalization_attempts', 'finalization_error')
        }),
        ('Metadata', {
            'fields': ('version',),
            'classes': ('collapse',)
        }),
    )

    def has_add_permission(self, request):
        # Requests are created through the API so the document stays bound to its hash
        return False

    def initiator_short(self, obj):
        """Display shortened initiator identity."""
        return f"{obj.initiator_id[:16]}..."
    initiator_short.short_description = 'Initiator'

    def is_finalized(self, obj):
        return obj.is_finalized
    is_finalized.boolean = True
    is_finalized.short_description = 'Finalized'

    @admin.action(description='Repair status')
    def repair_status(self, request, queryset):
        coordinator = get_signing_coordinator()
        for signing_request in queryset:
            try:
                result = coordinator.fix_status(signing_request.pk)
            except SigningError as e:
                self.message_user(request, f"{signing_request.pk}: {e.message}", messages.ERROR)
                continue
            self.message_user(request, f"{signing_request.pk}: {result['message']}")

    @admin.action(description='Generate final artifact')
    def generate_final_artifact(self, request, queryset):
        finalizer = get_finalizer()
        for signing_request in queryset:
            try:
                result = finalizer.generate_final_artifact(signing_request.pk)
            except SigningError as e:
                self.message_user(request, f"{signing_request.pk}: {e.message}", messages.ERROR)
                continue
            self.message_user(request, f"{signing_request.pk}: {result['artifact_ref']}")


@admin.register(FinalArtifact)
class FinalArtifactAdmin(admin.ModelAdmin):
    list_display = ('request', 'signature_set_hash', 'size', 'created_at')
    search_fields = ('request__id', 'signature_set_hash', 'sha256')
    readonly_fields = ('request', 'signature_set_hash', 'file', 'sha256', 'size', 'created_at')


@admin.register(Webhook)
class WebhookAdmin(admin.ModelAdmin):
    list_display = ('url', 'is_active', 'total_deliveries', 'successful_deliveries', 'failed_deliveries', 'last_triggered_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('url',)
    readonly_fields = ('created_at', 'updated_at', 'last_triggered_at',
                       'total_deliveries', 'successful_deliveries', 'failed_deliveries')


class WebhookDeliveryLogInline(admin.TabularInline):
    model = WebhookDeliveryLog
    extra = 0
    can_delete = False
    readonly_fields = ('status_code', 'response_body', 'error_message', 'duration_ms', 'created_at')


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ('event_type', 'webhook', 'status', 'attempt_count', 'created_at', 'delivered_at')
    list_filter = ('event_type', 'status', 'created_at')
    readonly_fields = ('webhook', 'event_type', 'payload', 'attempt_count', 'last_error',
                       'created_at', 'delivered_at', 'next_retry_at')
    inlines = [WebhookDeliveryLogInline]
