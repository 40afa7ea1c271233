import logging
from typing import Dict, Any, List

from modules.services.bucket_service import BucketService
from modules.services.entitlement_service import EntitlementService
from modules.services.payment_service import PaymentService


class AdminService:
    """Operator repair paths: manual reconciliation, divergences, counter drift"""

    def __init__(self, entitlement_service: EntitlementService, payment_service: PaymentService,
                 bucket_service: BucketService):
        self.entitlement_service = entitlement_service
        self.payment_service = payment_service
        self.bucket_service = bucket_service
        self.logger = logging.getLogger(__name__)

    def reconcile_user(self, user_id: str) -> Dict[str, Any]:
        """
        Re-run reconciliation for user_id against Stripe's current subscription
        state and re-issue the claim from the resulting record.
        """
        customer_id = self.payment_service.find_customer_id(user_id)
        subscription = None
        if customer_id:
            subscription = self.payment_service.find_current_subscription(customer_id)
        else:
            self.logger.info(f"User {user_id} has no billing customer, reconciling to no subscription")

        result = self.entitlement_service.reconcile_user_state(user_id, subscription, customer_id=customer_id)
        return {
            'userId': user_id,
            'plan': result['plan'].value,
            'subscriptionId': subscription['id'] if subscription else None,
            'changed': result['changed'],
            'claimIssued': result['claim_issued']
        }

    def list_divergences(self) -> List[Dict[str, Any]]:
        return self.entitlement_service.list_divergences()

    def recount_buckets(self, user_id: str) -> Dict[str, Any]:
        total = self.bucket_service.recount(user_id)
        return {'userId': user_id, 'total': total}
