"""
Unit tests for core functionality of the Budget Buckets application.
"""

import pytest
from unittest.mock import patch
from modules.core.error_handler import (
    handle_error,
    retry_on_error,
    AppError,
    ValidationError,
    DatabaseError,
    TransientStorageError,
    AuthenticationError,
    CapacityExceededError,
    log_error
)
from modules.core.models import Plan, SubscriptionStatus, Bucket, BucketPayload
from modules.database.schema import ClaimSnapshot, EntitlementRecord
from config.feature_flags import FeatureFlags, is_feature_enabled, enable_feature, disable_feature
from config.environment import Environment

def test_handle_error():
    """Test error handling decorator"""

    @handle_error
    def app_failure():
        raise ValidationError("Test validation error")

    @handle_error
    def unexpected_failure():
        raise KeyError("missing")

    # Application errors pass through unchanged
    with pytest.raises(ValidationError):
        app_failure()

    # Anything else is wrapped
    with pytest.raises(AppError) as exc_info:
        unexpected_failure()
    assert exc_info.value.error_code == "UNEXPECTED_ERROR"

def test_retry_on_error():
    """Test retry decorator"""
    calls = []

    @retry_on_error(max_retries=3, delay=0, exceptions=(TransientStorageError,))
    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientStorageError("busy")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3

    @retry_on_error(max_retries=2, delay=0, exceptions=(TransientStorageError,))
    def always_down():
        raise TransientStorageError("down")

    with pytest.raises(TransientStorageError):
        always_down()

    # Other exceptions are not retried
    attempts = []

    @retry_on_error(max_retries=3, delay=0, exceptions=(TransientStorageError,))
    def invalid():
        attempts.append(1)
        raise ValidationError("bad")

    with pytest.raises(ValidationError):
        invalid()
    assert len(attempts) == 1

def test_error_handling():
    """Test error classes"""
    with pytest.raises(AppError) as exc_info:
        raise AppError("Test error", "TEST_ERROR", {"detail": "test"})
    assert str(exc_info.value) == "Test error"
    assert exc_info.value.error_code == "TEST_ERROR"
    assert exc_info.value.details == {"detail": "test"}

    # Storage failures are database errors
    with pytest.raises(DatabaseError):
        raise TransientStorageError("Store unavailable")

    with pytest.raises(AuthenticationError):
        raise AuthenticationError("Auth error")

    error = CapacityExceededError("free", 5, 5)
    assert error.error_code == "capacity_exceeded"
    assert error.details == {'plan': 'free', 'total': 5, 'limit': 5}

def test_error_logging():
    """Test log_error output"""
    result = log_error(TransientStorageError("Store unavailable"), "create bucket")
    assert result['success'] is False
    assert result['error_code'] == "STORAGE_UNAVAILABLE"

    result = log_error(ValueError("plain"))
    assert result['error_code'] == "UNKNOWN_ERROR"

def test_feature_flags():
    """Test feature flag functionality"""
    # Core features
    assert is_feature_enabled('webhook_ingestion') is True
    assert is_feature_enabled('bucket_admission') is True
    assert FeatureFlags.set_feature_state('bucket_admission', False) is False

    # Unknown feature
    assert is_feature_enabled('unknown_feature') is False

    # Enable and disable an experimental feature
    original = FeatureFlags.EXPERIMENTAL_FEATURES['stale_event_guard']
    try:
        enable_feature('stale_event_guard')
        assert is_feature_enabled('stale_event_guard') is True
        assert 'stale_event_guard' in FeatureFlags.get_enabled_features()

        disable_feature('stale_event_guard')
        assert is_feature_enabled('stale_event_guard') is False
    finally:
        FeatureFlags.set_feature_state('stale_event_guard', original)

def test_environment_settings():
    """Test environment settings"""
    assert isinstance(Environment.is_production(), bool)
    assert Environment.get_free_bucket_limit() == 5
    assert Environment.get_max_transaction_attempts() >= 1

    firebase_config = Environment.get_firebase_config()
    assert all(key in firebase_config for key in ['apiKey', 'authDomain', 'projectId'])

    sync_settings = Environment.get_plan_sync_settings()
    assert 'min_refresh_interval' in sync_settings
    assert 'action_marker_ttl' in sync_settings

    error_settings = Environment.get_error_handling_settings()
    assert 'max_retries' in error_settings
    assert 'show_detailed_errors' in error_settings

    with patch.dict('os.environ', {'FREE_BUCKET_LIMIT': '7'}):
        assert Environment.get_setting('FREE_BUCKET_LIMIT') == '7'
    assert Environment.get_setting('free_bucket_limit') == 5
    assert Environment.get_setting('no_such_setting', 'fallback') == 'fallback'

def test_environment_validation():
    """Missing secrets fail validation"""
    with patch.dict('os.environ', {'STRIPE_SECRET_KEY': '', 'STRIPE_WEBHOOK_SECRET': ''}):
        assert Environment.validate_config() is False

def test_plan_values():
    """Plan and status normalisation"""
    assert Plan.from_value('plus') == Plan.PAID
    assert Plan.from_value('free') == Plan.FREE
    assert Plan.from_value(None) == Plan.FREE
    assert Plan.from_value('enterprise') == Plan.FREE

    assert SubscriptionStatus.from_provider('trialing') == SubscriptionStatus.ACTIVE
    assert SubscriptionStatus.from_provider('incomplete_expired') == SubscriptionStatus.CANCELED
    assert SubscriptionStatus.from_provider(None) == SubscriptionStatus.NONE

def test_claim_snapshot():
    assert ClaimSnapshot.from_claims(None).plan is None
    snapshot = ClaimSnapshot.from_claims({'plan': 'plus', 'planUpdatedAt': 1700000000, 'iat': 1})
    assert snapshot.plan == Plan.PAID
    assert snapshot.issued_at == 1700000000

def test_entitlement_record_documents():
    record = EntitlementRecord.from_document('u1', None)
    assert record.plan == Plan.FREE
    assert record.subscription_status == SubscriptionStatus.NONE

    record = EntitlementRecord.from_document('u1', {
        'plan': 'plus', 'subscriptionStatus': 'active', 'subscriptionId': 'sub_1'
    })
    assert record.to_document()['subscriptionId'] == 'sub_1'
    assert record.to_document()['plan'] == 'plus'

def test_bucket_document():
    bucket = Bucket(**BucketPayload(
        name='  Rent  ', type='debt', debt={'apr_pct': 19.9, 'balance_cents': 120000}
    ).model_dump(exclude_none=True))
    document = bucket.to_document()
    assert document['name'] == 'Rent'
    assert document['debt']['aprPct'] == 19.9
    assert 'goal' not in document
