"""
Tests for webhook events fired by signing transitions and their delivery.
"""
import hashlib
import hmac
import json
from unittest import mock

import pytest
import requests
from rest_framework.test import APIClient

from signing.models import Webhook, WebhookEvent
from signing.services.webhook_service import WebhookService

pytestmark = pytest.mark.django_db


@pytest.fixture
def webhook():
    return Webhook.objects.create(
        url='https://hooks.example.com/signing',
        subscribed_events=['signing_request.completed', 'signing_request.finalized'],
        secret='test-secret',
    )


def ok_response(status_code=200):
    response = mock.Mock()
    response.status_code = status_code
    response.text = 'ok' if status_code < 300 else 'error'
    return response


class TestTriggerEvent:

    def test_only_subscribed_events_are_recorded(self, webhook, coordinator, signing_request, signers):
        coordinator.sign(signing_request.pk, signers[0].signer_id, signers[0].sign(signing_request))
        assert WebhookEvent.objects.count() == 0

        for signer in signers[1:]:
            coordinator.sign(signing_request.pk, signer.signer_id, signer.sign(signing_request))

        events = list(WebhookEvent.objects.all())
        assert [e.event_type for e in events] == ['signing_request.completed']
        assert events[0].payload['request_id'] == str(signing_request.pk)
        assert events[0].payload['signatures_count'] == 3

    def test_inactive_webhook_ignored(self, webhook):
        webhook.is_active = False
        webhook.save()
        assert WebhookService.trigger_event('signing_request.completed', {'request_id': 'x'}) == []

    @mock.patch('signing.services.webhook_service.requests.post')
    def test_delivery_queued_after_commit(self, post, webhook, django_capture_on_commit_callbacks):
        post.return_value = ok_response()

        with django_capture_on_commit_callbacks(execute=True):
            events = WebhookService.trigger_event('signing_request.completed', {'request_id': 'x'})
            assert post.call_count == 0

        assert post.call_count == 1
        events[0].refresh_from_db()
        assert events[0].status == 'delivered'


class TestDeliverEvent:

    @mock.patch('signing.services.webhook_service.requests.post')
    def test_successful_delivery_is_signed(self, post, webhook):
        post.return_value = ok_response()
        event = WebhookEvent.objects.create(
            webhook=webhook, event_type='signing_request.completed', payload={'request_id': 'x'}
        )

        assert WebhookService.deliver_event(event) is True

        _, kwargs = post.call_args
        body = kwargs['json']
        expected = hmac.new(
            b'test-secret', json.dumps(body, sort_keys=True).encode(), hashlib.sha256
        ).hexdigest()
        assert kwargs['headers']['X-Webhook-Signature'] == expected
        assert kwargs['headers']['X-Webhook-Event'] == 'signing_request.completed'

        event.refresh_from_db()
        webhook.refresh_from_db()
        assert event.status == 'delivered'
        assert event.delivery_logs.get().status_code == 200
        assert webhook.successful_deliveries == 1

    @mock.patch('signing.services.webhook_service.requests.post')
    def test_failed_delivery_retries_then_fails(self, post, webhook, settings):
        settings.WEBHOOK_MAX_RETRIES = 2
        post.return_value = ok_response(500)
        event = WebhookEvent.objects.create(
            webhook=webhook, event_type='signing_request.completed', payload={'request_id': 'x'}
        )

        assert WebhookService.deliver_event(event) is False

        event.refresh_from_db()
        webhook.refresh_from_db()
        assert post.call_count == 3
        assert event.status == 'failed'
        assert event.attempt_count == 3
        assert event.last_error.startswith('HTTP 500')
        assert webhook.failed_deliveries == 1

    @mock.patch('signing.services.webhook_service.requests.post')
    def test_connection_error_logged(self, post, webhook, settings):
        settings.WEBHOOK_MAX_RETRIES = 0
        post.side_effect = requests.exceptions.ConnectionError()
        event = WebhookEvent.objects.create(
            webhook=webhook, event_type='signing_request.completed', payload={}
        )

        assert WebhookService.deliver_event(event) is False
        assert event.delivery_logs.get().error_message == 'Connection error'


class TestWebhookEndpoints:

    def test_create_generates_secret_and_validates_events(self):
        client = APIClient()
        response = client.post('/api/signing/webhooks/', {
            'url': 'https://hooks.example.com/a',
            'subscribed_events': ['signing_request.finalized'],
        }, format='json')

        assert response.status_code == 201
        assert response.data['secret']
        assert response.data['events_list'] == ['Final Artifact Generated']

        bad = client.post('/api/signing/webhooks/', {
            'url': 'https://hooks.example.com/b',
            'subscribed_events': ['document.signed'],
        }, format='json')
        assert bad.status_code == 400

    @mock.patch('signing.services.webhook_service.requests.post')
    def test_retry_endpoint_redelivers(self, post, webhook):
        post.return_value = ok_response()
        event = WebhookEvent.objects.create(
            webhook=webhook, event_type='signing_request.completed', payload={}, status='failed'
        )

        response = APIClient().post(f'/api/signing/webhook-events/{event.pk}/retry/')

        assert response.status_code == 202
        assert response.data['status'] == 'delivered'
