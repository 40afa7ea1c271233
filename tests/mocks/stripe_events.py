import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

WEBHOOK_SECRET = 'whsec_test'


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for payload"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}"
    signature = hmac.new(secret.encode('utf-8'), signed_payload.encode('utf-8'), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def subscription_event(event_id: str, event_type: str = 'customer.subscription.created',
                       status: str = 'active', uid: Optional[str] = 'user_123',
                       subscription_id: str = 'sub_123', customer_id: str = 'cus_123',
                       created: Optional[int] = None) -> Dict[str, Any]:
    return {
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'created': created or int(time.time()),
        'data': {
            'object': {
                'id': subscription_id,
                'object': 'subscription',
                'customer': customer_id,
                'status': status,
                'metadata': {'uid': uid} if uid else {}
            }
        }
    }


def invoice_event(event_id: str, event_type: str = 'invoice.payment_succeeded',
                  uid: Optional[str] = 'user_123', subscription_id: str = 'sub_123',
                  customer_id: str = 'cus_123', created: Optional[int] = None,
                  nested: bool = False) -> Dict[str, Any]:
    invoice = {
        'id': f"in_{event_id}",
        'object': 'invoice',
        'customer': customer_id,
        'metadata': {}
    }
    if nested:
        invoice['parent'] = {
            'type': 'subscription_details',
            'subscription_details': {
                'subscription': subscription_id,
                'metadata': {'uid': uid} if uid else {}
            }
        }
    else:
        invoice['subscription'] = subscription_id
        invoice['subscription_details'] = {'metadata': {'uid': uid} if uid else {}}
    return {
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'created': created or int(time.time()),
        'data': {'object': invoice}
    }


def signed(event: Dict[str, Any], secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None):
    """(payload, header) pair for event"""
    payload = json.dumps(event)
    return payload, sign_payload(payload, secret, timestamp)
