from dataclasses import dataclass
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from uuid import uuid4


class Plan(str, Enum):
    """Entitlement plan. Values are the ones carried in the auth claim."""
    FREE = "free"
    PAID = "plus"

    @classmethod
    def from_value(cls, value: Optional[str]) -> 'Plan':
        """Anything unrecognised is treated as Free"""
        if value == cls.PAID.value:
            return cls.PAID
        return cls.FREE


class SubscriptionStatus(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"

    @classmethod
    def from_provider(cls, status: Optional[str]) -> 'SubscriptionStatus':
        """Normalise a Stripe subscription status"""
        return _PROVIDER_STATUS.get(status or '', cls.NONE)


_PROVIDER_STATUS = {
    'active': SubscriptionStatus.ACTIVE,
    'trialing': SubscriptionStatus.ACTIVE,
    'past_due': SubscriptionStatus.PAST_DUE,
    'unpaid': SubscriptionStatus.PAST_DUE,
    'canceled': SubscriptionStatus.CANCELED,
    'incomplete_expired': SubscriptionStatus.CANCELED,
}


class EventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BucketGoal(BaseModel):
    amount_cents: int = Field(default=0, ge=0)
    target_date: Optional[str] = None
    saved_so_far_cents: int = Field(default=0, ge=0)
    contribution_per_period_cents: int = Field(default=0, ge=0)
    auto_calc: bool = False


class BucketDebt(BaseModel):
    apr_pct: float = Field(default=0, ge=0)
    min_payment_cents: int = Field(default=0, ge=0)
    balance_cents: int = Field(default=0, ge=0)


class BucketPayload(BaseModel):
    """Bucket fields accepted from the UI layer"""
    id: Optional[str] = None
    name: str = Field(min_length=1, max_length=100)
    bank_account: str = ""
    include: bool = True
    color: str = ""
    type: str = "expense"
    order_index: int = 0
    notes: str = Field(default="", max_length=1000)
    overspend_threshold_pct: float = Field(default=80, ge=0, le=100)
    spent_this_period_cents: int = 0
    goal: Optional[BucketGoal] = None
    debt: Optional[BucketDebt] = None

    @field_validator('name', 'bank_account', 'color', 'notes')
    @classmethod
    def strip_text(cls, value: str) -> str:
        return value.strip()

    @field_validator('type')
    @classmethod
    def check_type(cls, value: str) -> str:
        if value not in ('expense', 'saving', 'debt'):
            raise ValueError(f"Unknown bucket type: {value}")
        return value


class Bucket(BucketPayload):
    """A persisted bucket resource"""
    id: str = Field(default_factory=lambda: uuid4().hex)
    created_at: datetime = Field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'bankAccount': self.bank_account,
            'include': self.include,
            'color': self.color,
            'type': self.type,
            'orderIndex': self.order_index,
            'notes': self.notes,
            'overspendThresholdPct': self.overspend_threshold_pct,
            'spentThisPeriodCents': self.spent_this_period_cents,
            'createdAt': self.created_at,
        }
        if self.goal:
            data['goal'] = {
                'amountCents': self.goal.amount_cents,
                'targetDate': self.goal.target_date,
                'savedSoFarCents': self.goal.saved_so_far_cents,
                'contributionPerPeriodCents': self.goal.contribution_per_period_cents,
                'autoCalc': self.goal.auto_calc,
            }
        if self.debt:
            data['debt'] = {
                'aprPct': self.debt.apr_pct,
                'minPaymentCents': self.debt.min_payment_cents,
                'balanceCents': self.debt.balance_cents,
            }
        return data


@dataclass
class AdmissionResult:
    """Outcome of a bucket admission attempt. A rejection is a result, not an error."""
    allowed: bool
    plan: Plan
    total: int
    limit: Optional[int]
    bucket: Optional[Bucket] = None
