from dataclasses import dataclass
from typing import Dict, Any, Optional
import logging

from config.environment import Environment
from config.feature_flags import FeatureFlags
from modules.core.error_handler import TransientStorageError
from modules.core.models import Plan, SubscriptionStatus, EventType, utcnow
from modules.database.schema import EntitlementRecord, SubscriptionEvent
from modules.database.store import (
    DocumentStore,
    entitlement_path,
    event_path,
    bucket_counter_path,
    divergence_path,
    DIVERGENCES_COLLECTION,
)
from modules.services.claims_service import ClaimsService

# Record fields that make up the entitlement state proper
_STATE_FIELDS = ('plan', 'subscriptionStatus', 'subscriptionId', 'providerCustomerId', 'paymentCompletedAt')


@dataclass(frozen=True)
class TargetState:
    plan: Plan
    status: SubscriptionStatus


def derive_target(event_type: EventType, provider_status: Optional[str] = None) -> TargetState:
    """Target entitlement for an event. Only an active subscription grants the paid plan."""
    if event_type == EventType.DELETED:
        status = SubscriptionStatus.CANCELED
    elif event_type == EventType.PAYMENT_SUCCEEDED:
        status = SubscriptionStatus.ACTIVE
    elif event_type == EventType.PAYMENT_FAILED:
        status = SubscriptionStatus.PAST_DUE
    else:
        status = SubscriptionStatus.from_provider(provider_status)
    plan = Plan.PAID if status == SubscriptionStatus.ACTIVE else Plan.FREE
    return TargetState(plan=plan, status=status)


class EntitlementService:
    """
    Reconciles subscription lifecycle events into the Entitlement Record.

    The record write, the event-log check and the processedAt mark happen in a
    single transaction: an event is either fully applied and marked, or left
    unprocessed for the provider to redeliver. Claim issuance follows the write
    and never rolls it back.
    """

    def __init__(self, store: DocumentStore, claims_service: Optional[ClaimsService] = None,
                 max_attempts: Optional[int] = None):
        self.store = store
        self.claims = claims_service or ClaimsService()
        self.max_attempts = max_attempts or Environment.get_max_transaction_attempts()
        self.logger = logging.getLogger(__name__)

    def get_record(self, user_id: str) -> EntitlementRecord:
        """Read the current entitlement record (Free when absent)"""
        return EntitlementRecord.from_document(user_id, self.store.get(entitlement_path(user_id)))

    def reconcile(self, event: SubscriptionEvent) -> Dict[str, Any]:
        """
        Apply the target state derived from event.

        Returns:
            Dict with 'status' of 'processed', 'duplicate' or 'stale', and the
            resulting 'plan'

        Raises:
            TransientStorageError: the write could not be committed; the event
                stays unprocessed
        """
        if not event.user_id:
            raise ValueError(f"Event {event.event_id} has no user")

        user_id = event.user_id
        target = derive_target(event.type, event.provider_status)
        guard_stale = FeatureFlags.is_feature_enabled('stale_event_guard')

        def _apply(txn):
            now = utcnow()
            logged = txn.get(event_path(event.event_id)) or {}
            if logged.get('processedAt'):
                return {'status': 'duplicate', 'plan': Plan.from_value(logged.get('plan'))}

            current_doc = txn.get(entitlement_path(user_id))
            current = EntitlementRecord.from_document(user_id, current_doc)

            if (guard_stale and current.last_event_at and event.provider_created
                    and event.provider_created < current.last_event_at):
                txn.set(event_path(event.event_id), {
                    'status': 'stale',
                    'processedAt': now,
                    'plan': current.plan.value
                }, merge=True)
                return {'status': 'stale', 'plan': current.plan}

            fields = {
                'plan': target.plan.value,
                'subscriptionStatus': target.status.value,
                'subscriptionId': event.subscription_id or current.subscription_id,
                'providerCustomerId': event.customer_id or current.provider_customer_id,
                'paymentCompletedAt': current.payment_completed_at,
            }
            if event.type == EventType.PAYMENT_SUCCEEDED:
                fields['paymentCompletedAt'] = event.provider_created or now

            changed = self._write_state(txn, user_id, current_doc, fields, event.provider_created, now)
            txn.set(event_path(event.event_id), {
                'status': 'processed',
                'processedAt': now,
                'plan': target.plan.value
            }, merge=True)
            return {'status': 'processed', 'plan': target.plan, 'changed': changed}

        result = self.store.run_transaction(_apply, max_attempts=self.max_attempts)

        if result['status'] == 'duplicate':
            self.logger.info(f"Event {event.event_id} already reconciled, skipping")
        elif result['status'] == 'stale':
            self.logger.warning(
                f"Event {event.event_id} for user {user_id} is older than the stored state, not applied")
        else:
            self.logger.info(
                f"Reconciled event {event.event_id} ({event.type.value}) for user {user_id}: "
                f"plan={target.plan.value} status={target.status.value}")
            result['claim_issued'] = self._propagate(user_id, target.plan, source=event.event_id)
        return result

    def reconcile_user_state(self, user_id: str, subscription: Optional[Dict[str, Any]],
                             customer_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Apply the provider's authoritative subscription for user_id and re-issue
        the claim. Used by the administrative repair path.

        Args:
            subscription: Provider subscription object, or None for no subscription
        """
        if subscription:
            status = SubscriptionStatus.from_provider(subscription.get('status'))
            subscription_id = subscription.get('id')
            customer_id = subscription.get('customer') or customer_id
        else:
            status = SubscriptionStatus.NONE
            subscription_id = None
        plan = Plan.PAID if status == SubscriptionStatus.ACTIVE else Plan.FREE

        def _apply(txn):
            now = utcnow()
            current_doc = txn.get(entitlement_path(user_id))
            current = EntitlementRecord.from_document(user_id, current_doc)
            fields = {
                'plan': plan.value,
                'subscriptionStatus': status.value,
                'subscriptionId': subscription_id,
                'providerCustomerId': customer_id or current.provider_customer_id,
                'paymentCompletedAt': current.payment_completed_at,
            }
            return self._write_state(txn, user_id, current_doc, fields, None, now)

        changed = self.store.run_transaction(_apply, max_attempts=self.max_attempts)
        self.logger.info(
            f"Manual reconciliation for user {user_id}: plan={plan.value} status={status.value} changed={changed}")
        claim_issued = self._propagate(user_id, plan, source='manual')
        return {'status': 'processed', 'plan': plan, 'changed': changed, 'claim_issued': claim_issued}

    def bootstrap_user(self, user_id: str, email: Optional[str] = None) -> EntitlementRecord:
        """Create the Free record and a zero bucket counter for a new user if absent"""
        def _apply(txn):
            now = utcnow()
            record_doc = txn.get(entitlement_path(user_id))
            counter_doc = txn.get(bucket_counter_path(user_id))
            if record_doc is None:
                record = EntitlementRecord(user_id=user_id, updated_at=now)
                data = record.to_document()
                data['email'] = email
                data['createdAt'] = now
                txn.set(entitlement_path(user_id), data)
                record_doc = data
            if counter_doc is None:
                txn.set(bucket_counter_path(user_id), {'total': 0, 'createdAt': now, 'updatedAt': now})
            return record_doc

        record_doc = self.store.run_transaction(_apply, max_attempts=self.max_attempts)
        return EntitlementRecord.from_document(user_id, record_doc)

    def list_divergences(self):
        return [dict(data, userId=uid) for uid, data in self.store.list_documents(DIVERGENCES_COLLECTION)]

    def _write_state(self, txn, user_id, current_doc, fields, event_time, now) -> bool:
        """Write fields if they differ from the stored record. Returns whether they did."""
        current_doc = current_doc or {}
        changed = not current_doc or any(current_doc.get(key) != fields[key] for key in _STATE_FIELDS)
        last_event_at = current_doc.get('lastEventAt')
        advances = event_time is not None and (last_event_at is None or event_time > last_event_at)

        if changed:
            data = dict(fields, updatedAt=now)
            if advances:
                data['lastEventAt'] = event_time
            txn.set(entitlement_path(user_id), data, merge=True)
        elif advances:
            txn.set(entitlement_path(user_id), {'lastEventAt': event_time}, merge=True)
        return changed

    def _propagate(self, user_id: str, plan: Plan, source: str) -> bool:
        """Issue the claim; on failure record a divergence instead of failing"""
        error = self.claims.issue(user_id, plan)
        try:
            if error is None:
                self.store.delete(divergence_path(user_id))
                return True
            self.logger.warning(f"Claim divergence for user {user_id}: record plan {plan.value}, claim not updated")
            self.store.set(divergence_path(user_id), {
                'plan': plan.value,
                'source': source,
                'error': error,
                'detectedAt': utcnow()
            })
        except TransientStorageError as e:
            self.logger.error(f"Could not update divergence bookkeeping for user {user_id}: {e.message}")
        return False
