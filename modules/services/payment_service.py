import stripe
import os
import logging
from typing import Dict, Optional, Any, List

from config.environment import Environment
from modules.core.error_handler import BillingProviderError, ValidationError, retry_on_error
from modules.database.store import DocumentStore, entitlement_path

# Subscription statuses that still represent a live relationship, best first
_STATUS_PREFERENCE = ['active', 'trialing', 'past_due', 'unpaid', 'incomplete']


class PaymentService:
    """
    Stripe customer and subscription management.

    Never writes the Entitlement Record: plan changes only reach it through
    webhooks or the manual reconciliation path.
    """

    def __init__(self, store: DocumentStore):
        self.stripe = stripe
        self.stripe.api_key = os.getenv('STRIPE_SECRET_KEY')
        self.store = store
        self.settings = Environment.get_stripe_settings()
        self.logger = logging.getLogger(__name__)

    def get_billing_config(self) -> Dict[str, Any]:
        """Publishable settings the client needs to start an upgrade"""
        return {
            'publishableKey': self.settings.get('publishable_key'),
            'priceId': self.settings.get('price_id')
        }

    def find_customer_id(self, user_id: str) -> Optional[str]:
        """The user's Stripe customer: from the record, else a metadata search"""
        record = self.store.get(entitlement_path(user_id)) or {}
        if record.get('providerCustomerId'):
            return record['providerCustomerId']

        try:
            result = self.stripe.Customer.search(query=f"metadata['uid']:'{user_id}'", limit=1)
        except stripe.StripeError as e:
            self.logger.error(f"Error searching customer for user {user_id}: {str(e)}")
            raise BillingProviderError("Failed to look up billing customer", details=str(e)) from e
        if result.data:
            return result.data[0].id
        return None

    def ensure_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """Return the user's Stripe customer id, creating the customer if needed"""
        customer_id = self.find_customer_id(user_id)
        if customer_id:
            return customer_id

        try:
            customer = self.stripe.Customer.create(
                email=email,
                metadata={'uid': user_id}
            )
        except stripe.StripeError as e:
            self.logger.error(f"Error creating customer: {str(e)}")
            raise BillingProviderError("Failed to create billing customer", details=str(e)) from e
        self.logger.info(f"Created Stripe customer {customer.id} for user {user_id}")
        return customer.id

    def create_setup_intent(self, user_id: str, email: Optional[str] = None) -> Dict[str, Any]:
        """Set up a payment method for a subscription"""
        customer_id = self.ensure_customer(user_id, email)
        try:
            intent = self.stripe.SetupIntent.create(
                customer=customer_id,
                usage='off_session',
                automatic_payment_methods={'enabled': True},
                metadata={'uid': user_id}
            )
        except stripe.StripeError as e:
            self.logger.error(f"Error creating setup intent: {str(e)}")
            raise BillingProviderError("Failed to create setup intent", details=str(e)) from e
        return {'clientSecret': intent.client_secret, 'customerId': customer_id}

    def create_subscription(self, user_id: str, customer_id: str, payment_method_id: str,
                            price_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Create the Plus subscription with a confirmed payment method.

        The entitlement changes when Stripe reports the subscription through
        the webhook, not here.

        Returns:
            Dict with the subscription id and status, and 'requiresAction' plus
            'clientSecret' when the first invoice needs SCA confirmation
        """
        price_id = price_id or self.settings.get('price_id')
        if not price_id:
            raise ValidationError("No price configured for the Plus plan", error_code="missing_price")
        if not payment_method_id:
            raise ValidationError("A payment method is required", error_code="missing_payment_method")

        try:
            self.stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
            self.stripe.Customer.modify(
                customer_id,
                invoice_settings={'default_payment_method': payment_method_id}
            )
            subscription = self.stripe.Subscription.create(
                customer=customer_id,
                items=[{'price': price_id}],
                default_payment_method=payment_method_id,
                payment_behavior='allow_incomplete',
                metadata={'uid': user_id},
                expand=['latest_invoice.payment_intent']
            )
        except stripe.StripeError as e:
            self.logger.error(f"Error creating subscription: {str(e)}")
            raise BillingProviderError("Failed to create subscription", details=str(e)) from e

        payment_intent = None
        if subscription.latest_invoice is not None:
            payment_intent = getattr(subscription.latest_invoice, 'payment_intent', None)
        requires_action = payment_intent is not None and payment_intent.status == 'requires_action'

        self.logger.info(f"Created subscription {subscription.id} ({subscription.status}) for user {user_id}")
        return {
            'subscription': {'id': subscription.id, 'status': subscription.status},
            'requiresAction': requires_action,
            'clientSecret': payment_intent.client_secret if requires_action else None
        }

    def create_portal_session(self, user_id: str, return_url: Optional[str] = None) -> Optional[str]:
        """
        Billing portal session URL, or None when the user has no customer yet.
        """
        customer_id = self.find_customer_id(user_id)
        if not customer_id:
            return None
        try:
            session = self.stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url or self.settings.get('portal_return_url')
            )
        except stripe.StripeError as e:
            self.logger.error(f"Error creating portal session: {str(e)}")
            raise BillingProviderError("Failed to access billing portal", details=str(e)) from e
        return session.url

    @retry_on_error(exceptions=(stripe.APIConnectionError, stripe.RateLimitError))
    def _list_subscriptions(self, customer_id: str) -> List[Any]:
        return self.stripe.Subscription.list(customer=customer_id, status='all', limit=20).data

    def find_current_subscription(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """
        The customer's authoritative subscription: the best live one, else the
        most recent. None when the customer never subscribed.
        """
        try:
            subscriptions = self._list_subscriptions(customer_id)
        except stripe.StripeError as e:
            self.logger.error(f"Error listing subscriptions for {customer_id}: {str(e)}")
            raise BillingProviderError("Failed to list subscriptions", details=str(e)) from e

        if not subscriptions:
            return None

        def _rank(subscription):
            status = subscription.status
            preference = _STATUS_PREFERENCE.index(status) if status in _STATUS_PREFERENCE else len(_STATUS_PREFERENCE)
            return (preference, -(subscription.created or 0))

        best = sorted(subscriptions, key=_rank)[0]
        return {
            'id': best.id,
            'status': best.status,
            'customer': customer_id,
            'created': best.created
        }
