from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from modules.core.models import Plan, SubscriptionStatus, EventType, utcnow


class EntitlementRecord(BaseModel):
    """Canonical per-user plan state, stored at users/{uid}"""
    user_id: str
    plan: Plan = Plan.FREE
    subscription_id: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    provider_customer_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    payment_completed_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, user_id: str, data: Optional[Dict[str, Any]]) -> 'EntitlementRecord':
        if not data:
            return cls(user_id=user_id)
        return cls(
            user_id=user_id,
            plan=Plan.from_value(data.get('plan')),
            subscription_id=data.get('subscriptionId'),
            subscription_status=SubscriptionStatus(data.get('subscriptionStatus') or 'none'),
            provider_customer_id=data.get('providerCustomerId'),
            updated_at=data.get('updatedAt'),
            payment_completed_at=data.get('paymentCompletedAt'),
            last_event_at=data.get('lastEventAt'),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            'plan': self.plan.value,
            'subscriptionId': self.subscription_id,
            'subscriptionStatus': self.subscription_status.value,
            'providerCustomerId': self.provider_customer_id,
            'updatedAt': self.updated_at,
            'paymentCompletedAt': self.payment_completed_at,
            'lastEventAt': self.last_event_at,
        }


class SubscriptionEvent(BaseModel):
    """A provider lifecycle notification as recorded in billing_events/{eventId}"""
    event_id: str
    type: EventType
    provider_type: str
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    provider_status: Optional[str] = None
    provider_created: Optional[datetime] = None
    received_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'providerType': self.provider_type,
            'userId': self.user_id,
            'subscriptionId': self.subscription_id,
            'customerId': self.customer_id,
            'providerStatus': self.provider_status,
            'providerCreated': self.provider_created,
            'receivedAt': self.received_at,
            'processedAt': self.processed_at,
        }


class BucketCounter(BaseModel):
    """Live bucket count, stored at users/{uid}/meta/bucketCounts"""
    user_id: str
    total: int = 0
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, user_id: str, data: Optional[Dict[str, Any]]) -> 'BucketCounter':
        if not data:
            return cls(user_id=user_id)
        return cls(user_id=user_id, total=int(data.get('total') or 0), updated_at=data.get('updatedAt'))


class ClaimSnapshot(BaseModel):
    """The plan claim as seen inside an issued ID token"""
    plan: Optional[Plan] = None
    issued_at: Optional[int] = None

    @classmethod
    def from_claims(cls, claims: Optional[Dict[str, Any]]) -> 'ClaimSnapshot':
        claims = claims or {}
        plan = claims.get('plan')
        return cls(
            plan=Plan.from_value(plan) if plan else None,
            issued_at=claims.get('planUpdatedAt') or claims.get('iat'),
        )
