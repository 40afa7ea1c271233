"""
Upgrade and cancellation flow across the gateway, reconciler, admission
controller and client synchronizer, sharing one store.
"""
import unittest
from unittest.mock import MagicMock, patch
from modules.client.plan_sync import PlanSynchronizer
from modules.core.models import Plan, BucketPayload
from modules.services.bucket_service import BucketService
from modules.services.entitlement_service import EntitlementService
from modules.services.webhook_handler import WebhookHandler
from tests.mocks.firestore import InMemoryStore
from tests.mocks.stripe_events import WEBHOOK_SECRET, invoice_event, signed, subscription_event


class FakeIdentityPlatform:
    """Claims set by the server, visible to the client only on refresh"""

    def __init__(self):
        self.claims = {}
        self.fail = False

    def issue(self, user_id, plan):
        if self.fail:
            return 'identity platform unavailable'
        self.claims[user_id] = {'plan': plan.value}
        return None


class TestUpgradeFlow(unittest.TestCase):
    def setUp(self):
        self.env_patcher = patch.dict('os.environ', {
            'STRIPE_SECRET_KEY': 'sk_test_123',
            'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET
        })
        self.env_patcher.start()

        self.store = InMemoryStore()
        self.identity = FakeIdentityPlatform()
        self.entitlements = EntitlementService(self.store, self.identity, max_attempts=3)
        self.gateway = WebhookHandler(self.store, self.entitlements)
        self.buckets = BucketService(self.store, free_limit=5, max_attempts=3)

        self.uid = 'user_123'
        self.entitlements.bootstrap_user(self.uid, 'user@example.com')
        for index in range(5):
            self.assertTrue(self.buckets.try_create(self.uid, BucketPayload(name=f'Bucket {index}')).allowed)

        session = MagicMock()
        session.uid = self.uid
        session.force_refresh.side_effect = lambda: dict(self.identity.claims.get(self.uid, {}))
        self.client = PlanSynchronizer(self.store, min_refresh_interval=0, action_marker_ttl=60)
        self.client.on_session_changed(session)

    def tearDown(self):
        self.env_patcher.stop()

    def deliver(self, event):
        return self.gateway.handle_event(*signed(event))

    def test_upgrade_then_cancel(self):
        self.assertFalse(self.buckets.try_create(self.uid, BucketPayload(name='Sixth')).allowed)

        # Payment and activation, with redelivery of both
        paid = invoice_event('evt_paid')
        created = subscription_event('evt_created', status='active')
        self.assertEqual(self.deliver(paid)['status'], 'success')
        self.assertEqual(self.deliver(created)['status'], 'success')
        self.assertEqual(self.deliver(paid)['status'], 'duplicate')
        self.assertEqual(self.deliver(created)['status'], 'duplicate')

        self.assertEqual(self.entitlements.get_record(self.uid).plan, Plan.PAID)
        self.assertTrue(self.buckets.try_create(self.uid, BucketPayload(name='Sixth')).allowed)
        self.assertEqual(self.buckets.get_bucket_count(self.uid), 6)

        # Client returns from checkout
        self.assertTrue(self.client.consume_navigation_markers({'upgraded': '1'}))
        self.assertEqual(self.client.get_plan(), Plan.PAID)

        # Cancellation downgrades, existing buckets are kept
        self.deliver(subscription_event('evt_deleted', event_type='customer.subscription.deleted', status='canceled'))
        self.assertEqual(self.entitlements.get_record(self.uid).plan, Plan.FREE)
        self.assertFalse(self.buckets.try_create(self.uid, BucketPayload(name='Seventh')).allowed)
        self.assertEqual(self.buckets.get_bucket_count(self.uid), 6)

        # Creates resume once the user is below the cap again
        live = [doc_id for doc_id, _ in self.store.list_documents(f'users/{self.uid}/budgets')]
        self.buckets.delete_bucket(self.uid, live[0])
        self.assertFalse(self.buckets.try_create(self.uid, BucketPayload(name='Seventh')).allowed)
        self.buckets.delete_bucket(self.uid, live[1])
        self.assertTrue(self.buckets.try_create(self.uid, BucketPayload(name='Seventh')).allowed)
        self.assertEqual(self.buckets.get_bucket_count(self.uid), 5)

        self.client.refresh_plan()
        self.assertEqual(self.client.get_plan(), Plan.FREE)

    def test_client_converges_despite_claim_failure(self):
        """Record is Paid, claim still Free: one refresh reaches Paid through the record"""
        self.identity.claims[self.uid] = {'plan': 'free'}
        self.identity.fail = True

        result = self.deliver(subscription_event('evt_created', status='active'))

        self.assertEqual(result['status'], 'success')
        self.assertIn(f'claim_divergences/{self.uid}', self.store.documents)
        self.assertEqual(self.client.refresh_plan(), Plan.PAID)

    def test_redelivery_after_storage_outage(self):
        event = subscription_event('evt_created', status='active')
        self.store.fail_next_commits = 3
        self.assertEqual(self.deliver(event)['status'], 'error')
        self.assertEqual(self.entitlements.get_record(self.uid).plan, Plan.FREE)

        self.assertEqual(self.deliver(event)['status'], 'success')
        self.assertEqual(self.entitlements.get_record(self.uid).plan, Plan.PAID)

if __name__ == '__main__':
    unittest.main()
