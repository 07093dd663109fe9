from django.db import migrations, models
import django.core.validators
import django.db.models.deletion
import signing.models
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='SigningRequest',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('document_hash', models.CharField(help_text='SHA256 hash of the original document bytes', max_length=64, validators=[django.core.validators.RegexValidator(message='Must be a lowercase hex SHA256 digest', regex='^[0-9a-f]{64}$')])),
                ('initiator_id', models.CharField(db_index=True, max_length=255)),
                ('required_signer_ids', models.JSONField(help_text='Ordered list of signer identities, fixed at creation')),
                ('signing_type', models.CharField(choices=[('parallel', 'Any order'), ('sequential', 'Sequential')], default='parallel', max_length=20)),
                ('description', models.TextField(blank=True)),
                ('document', models.FileField(blank=True, help_text='Original document bytes (optional, used for the final PDF)', null=True, upload_to=signing.models.request_document_upload_path)),
                ('document_name', models.CharField(blank=True, max_length=255)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('rejected', 'Rejected')], db_index=True, default='pending', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('rejection_reason', models.TextField(blank=True)),
                ('final_artifact_ref', models.CharField(blank=True, max_length=500, null=True)),
                ('finalized_at', models.DateTimeField(blank=True, null=True)),
                ('finalization_attempts', models.PositiveIntegerField(default=0)),
                ('finalization_error', models.TextField(blank=True)),
                ('version', models.PositiveIntegerField(default=0)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'created_at'], name='signing_sig_status_4b1f0e_idx')],
            },
        ),
        migrations.CreateModel(
            name='Webhook',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('url', models.URLField(help_text='External endpoint URL to receive webhook events')),
                ('subscribed_events', models.JSONField(default=list, help_text="List of events to subscribe to (e.g., ['signing_request.completed'])")),
                ('secret', models.CharField(help_text='Secret key for webhook signature verification (HMAC-SHA256)', max_length=255, unique=True)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('last_triggered_at', models.DateTimeField(blank=True, null=True)),
                ('total_deliveries', models.PositiveIntegerField(default=0)),
                ('successful_deliveries', models.PositiveIntegerField(default=0)),
                ('failed_deliveries', models.PositiveIntegerField(default=0)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['is_active', 'created_at'], name='signing_web_is_acti_7c2d41_idx')],
            },
        ),
        migrations.CreateModel(
            name='SignerSlot',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('signer_id', models.CharField(max_length=255, validators=[django.core.validators.MinLengthValidator(1)])),
                ('order', models.PositiveIntegerField(help_text='Position in required_signer_ids')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('signed', 'Signed'), ('rejected', 'Rejected')], default='pending', max_length=20)),
                ('signature', models.TextField(blank=True, null=True)),
                ('signed_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('user_agent', models.TextField(blank=True)),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('event_hash', models.CharField(blank=True, help_text="SHA256 of this slot's signing event for tamper detection", max_length=64, null=True)),
                ('version', models.PositiveIntegerField(default=0)),
                ('request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='slots', to='signing.signingrequest')),
            ],
            options={
                'ordering': ['request', 'order'],
            },
        ),
        migrations.AddConstraint(
            model_name='signerslot',
            constraint=models.UniqueConstraint(fields=('request', 'signer_id'), name='unique_signer_per_request'),
        ),
        migrations.AddConstraint(
            model_name='signerslot',
            constraint=models.UniqueConstraint(fields=('request', 'order'), name='unique_order_per_request'),
        ),
        migrations.CreateModel(
            name='FinalArtifact',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('signature_set_hash', models.CharField(max_length=64, validators=[django.core.validators.RegexValidator(message='Must be a lowercase hex SHA256 digest', regex='^[0-9a-f]{64}$')])),
                ('file', models.FileField(max_length=500, upload_to=signing.models.final_artifact_upload_path)),
                ('sha256', models.CharField(help_text='SHA256 hash of the stored artifact bytes', max_length=64)),
                ('size', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='artifacts', to='signing.signingrequest')),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.AddConstraint(
            model_name='finalartifact',
            constraint=models.UniqueConstraint(fields=('request', 'signature_set_hash'), name='unique_artifact_per_signature_set'),
        ),
        migrations.CreateModel(
            name='WebhookEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('signing_request.created', 'Signing Request Created'), ('signing_request.signed', 'Signature Accepted'), ('signing_request.completed', 'Signing Request Completed'), ('signing_request.rejected', 'Signing Request Rejected'), ('signing_request.finalized', 'Final Artifact Generated'), ('signing_request.finalization_failed', 'Finalization Failed')], max_length=50)),
                ('payload', models.JSONField()),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('delivered', 'Delivered'), ('failed', 'Failed'), ('retrying', 'Retrying')], default='pending', max_length=20)),
                ('attempt_count', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('next_retry_at', models.DateTimeField(blank=True, null=True)),
                ('webhook', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='webhook_events', to='signing.webhook')),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['webhook', 'status', 'created_at'], name='signing_web_webhook_2e9a10_idx'),
                    models.Index(fields=['event_type', 'created_at'], name='signing_web_event_t_8f3c52_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='WebhookDeliveryLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status_code', models.PositiveIntegerField(blank=True, null=True)),
                ('response_body', models.TextField(blank=True)),
                ('error_message', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('duration_ms', models.PositiveIntegerField(blank=True, null=True)),
                ('event', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='delivery_logs', to='signing.webhookevent')),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['event', 'created_at'], name='signing_web_event_i_5d7b93_idx')],
            },
        ),
    ]
