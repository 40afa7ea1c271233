import stripe
import os
import json
import logging
from typing import Dict, Any, Optional, Union
from datetime import datetime, timezone

from modules.core.error_handler import BillingProviderError, TransientStorageError, handle_error
from modules.core.models import EventType, utcnow
from modules.database.schema import SubscriptionEvent
from modules.database.store import DocumentStore, event_path
from modules.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

# Stripe event type -> lifecycle event type
EVENT_TYPES = {
    'customer.subscription.created': EventType.CREATED,
    'customer.subscription.updated': EventType.UPDATED,
    'customer.subscription.deleted': EventType.DELETED,
    'invoice.payment_succeeded': EventType.PAYMENT_SUCCEEDED,
    'invoice.paid': EventType.PAYMENT_SUCCEEDED,
    'invoice.payment_failed': EventType.PAYMENT_FAILED,
}

_UID_KEYS = ('uid', 'firebaseUid', 'user_id')


def _metadata_uid(metadata) -> Optional[str]:
    if not metadata:
        return None
    for key in _UID_KEYS:
        try:
            value = metadata[key]
        except KeyError:
            continue
        if value:
            return value
    return None


class WebhookHandler:
    """
    Ingestion gateway for Stripe subscription lifecycle notifications.

    Verifies the signature (fails closed), deduplicates on the event id and
    forwards the event to the reconciler synchronously. The only document it
    writes itself is the billing_events row. Redelivery is left to Stripe.

    handle_event returns a dict whose 'status' is one of:
        success    reconciled now
        duplicate  already reconciled, nothing done
        ignored    acknowledged, not reconciled (unhandled type or unknown user)
        rejected   signature or payload invalid (HTTP 400)
        error      reconciliation failed, redeliver (HTTP 5xx)
    """

    def __init__(self, store: DocumentStore, entitlement_service: EntitlementService,
                 tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.stripe = stripe
        self.stripe.api_key = os.getenv('STRIPE_SECRET_KEY')
        self.webhook_secret = os.getenv('STRIPE_WEBHOOK_SECRET')
        self.tolerance = tolerance
        self.store = store
        self.entitlement_service = entitlement_service

    def handle_event(self, payload: Union[bytes, str], sig_header: Optional[str]) -> Dict[str, Any]:
        """Handle an incoming Stripe webhook delivery"""
        if isinstance(payload, bytes):
            try:
                payload = payload.decode('utf-8')
            except UnicodeDecodeError:
                return {'status': 'rejected', 'error': 'Invalid payload'}

        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured, refusing webhook")
            return {'status': 'error', 'error': 'Webhook verification unavailable'}

        if not sig_header:
            security_logger.warning("Webhook rejected: missing Stripe-Signature header")
            return {'status': 'rejected', 'error': 'Missing signature'}

        try:
            self.stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            security_logger.warning(f"Webhook rejected: signature verification failed ({str(e)})")
            return {'status': 'rejected', 'error': 'Invalid signature'}

        try:
            data = json.loads(payload)
            event_id = data['id']
            provider_type = data['type']
        except (ValueError, KeyError, TypeError):
            logger.warning("Webhook rejected: signed payload is not a Stripe event")
            return {'status': 'rejected', 'error': 'Invalid payload'}

        event_type = EVENT_TYPES.get(provider_type)
        if event_type is None:
            logger.info(f"Ignoring unhandled Stripe event {event_id} of type {provider_type}")
            return {'status': 'ignored', 'type': provider_type}

        try:
            result = self._ingest(data, event_id, event_type)
        except (TransientStorageError, BillingProviderError) as e:
            logger.warning(f"Failed to process event {event_id}, leaving it for redelivery: {e.message}")
            return {'status': 'error', 'event_id': event_id, 'error': e.message}

        if result['status'] in ('duplicate', 'ignored'):
            return result
        return {
            'status': 'success',
            'event_id': event_id,
            'outcome': result['status'],
            'plan': result['plan'].value
        }

    @handle_error
    def _ingest(self, data: Dict[str, Any], event_id: str, event_type: EventType) -> Dict[str, Any]:
        """Log the delivery and reconcile it. Anything but a storage or provider failure is a bug."""
        logged = self.store.get(event_path(event_id)) or {}
        if logged.get('processedAt'):
            logger.info(f"Duplicate delivery of event {event_id}, already processed")
            return {'status': 'duplicate', 'event_id': event_id}

        event = self._build_event(data, event_type)
        if not self._log_delivery(event):
            logger.info(f"Duplicate delivery of event {event_id}, processed concurrently")
            return {'status': 'duplicate', 'event_id': event_id}

        if not event.user_id:
            logger.error(f"Event {event_id} ({event.provider_type}) could not be mapped to a user")
            return {'status': 'ignored', 'event_id': event_id, 'reason': 'unresolved user'}

        result = self.entitlement_service.reconcile(event)
        if result['status'] == 'duplicate':
            return {'status': 'duplicate', 'event_id': event_id}
        return result

    def _log_delivery(self, event: SubscriptionEvent) -> bool:
        """
        Upsert the billing_events row for this delivery.

        Returns:
            False when the row was marked processed in the meantime. processedAt
            and a processed status are only ever written by the reconciler.
        """
        path = event_path(event.event_id)
        row = event.to_document()
        row.pop('processedAt')
        row['status'] = 'received' if event.user_id else 'unresolved'

        def _upsert(txn):
            logged = txn.get(path) or {}
            if logged.get('processedAt'):
                return False
            txn.set(path, dict(
                row,
                receivedAt=logged.get('receivedAt') or event.received_at,
                deliveries=int(logged.get('deliveries') or 0) + 1
            ), merge=True)
            return True

        return self.store.run_transaction(_upsert, max_attempts=self.entitlement_service.max_attempts)

    def _build_event(self, data: Dict[str, Any], event_type: EventType) -> SubscriptionEvent:
        """Map a Stripe event onto a lifecycle event"""
        obj = (data.get('data') or {}).get('object') or {}
        customer_id = obj.get('customer')

        if data['type'].startswith('customer.subscription.'):
            subscription_id = obj.get('id')
            provider_status = obj.get('status')
        else:
            subscription_id = obj.get('subscription') or self._invoice_subscription_details(obj).get('subscription')
            provider_status = None

        created = data.get('created')
        return SubscriptionEvent(
            event_id=data['id'],
            type=event_type,
            provider_type=data['type'],
            user_id=self._resolve_user_id(obj, customer_id),
            subscription_id=subscription_id,
            customer_id=customer_id,
            provider_status=provider_status,
            provider_created=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
            received_at=utcnow(),
        )

    @staticmethod
    def _invoice_subscription_details(invoice: Dict[str, Any]) -> Dict[str, Any]:
        # Newer API versions nest subscription details under invoice.parent
        parent = invoice.get('parent') or {}
        return parent.get('subscription_details') or invoice.get('subscription_details') or {}

    def _resolve_user_id(self, obj: Dict[str, Any], customer_id: Optional[str]) -> Optional[str]:
        """metadata.uid on the object, then on the invoice's subscription, then on the customer"""
        user_id = _metadata_uid(obj.get('metadata'))
        if user_id:
            return user_id

        user_id = _metadata_uid(self._invoice_subscription_details(obj).get('metadata'))
        if user_id:
            return user_id

        if customer_id:
            return self._get_user_id_from_customer(customer_id)
        return None

    def _get_user_id_from_customer(self, customer_id: str) -> Optional[str]:
        """Get user ID from Stripe customer ID"""
        try:
            customer = self.stripe.Customer.retrieve(customer_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Failed to retrieve customer {customer_id}", details=str(e)) from e
        if customer is None:
            return None
        try:
            metadata = customer['metadata']
        except KeyError:
            return None
        return _metadata_uid(metadata)
