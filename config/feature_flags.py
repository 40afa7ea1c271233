"""
Feature flag configuration for safe feature management
"""

import os
from typing import List
import logging

logger = logging.getLogger(__name__)

class FeatureFlags:
    """Manages feature flags for the application"""

    # Core features that should always be enabled
    CORE_FEATURES = {
        'webhook_ingestion': True,
        'bucket_admission': True,
        'claims_propagation': True
    }

    # Experimental features that can be toggled
    EXPERIMENTAL_FEATURES = {
        # Reject reconciliation of events older than the record's lastEventAt
        'stale_event_guard': os.getenv('FEATURE_STALE_EVENT_GUARD', 'False').lower() == 'true',
        'billing_portal': os.getenv('FEATURE_BILLING_PORTAL', 'True').lower() == 'true'
    }

    # Feature dependencies
    FEATURE_DEPENDENCIES = {
        'stale_event_guard': ['webhook_ingestion']
    }

    @staticmethod
    def is_feature_enabled(feature_name: str) -> bool:
        """Check if a feature is enabled"""
        # Check core features first
        if feature_name in FeatureFlags.CORE_FEATURES:
            return FeatureFlags.CORE_FEATURES[feature_name]

        # Check experimental features
        if feature_name in FeatureFlags.EXPERIMENTAL_FEATURES:
            # Check dependencies
            for dependency in FeatureFlags.FEATURE_DEPENDENCIES.get(feature_name, []):
                if not FeatureFlags.is_feature_enabled(dependency):
                    logger.warning(f"Feature {feature_name} disabled due to missing dependency: {dependency}")
                    return False
            return FeatureFlags.EXPERIMENTAL_FEATURES[feature_name]

        logger.warning(f"Unknown feature: {feature_name}")
        return False

    @staticmethod
    def get_enabled_features() -> List[str]:
        """Get list of all enabled features"""
        enabled_features = [feature for feature, enabled in FeatureFlags.CORE_FEATURES.items() if enabled]

        for feature in FeatureFlags.EXPERIMENTAL_FEATURES:
            if FeatureFlags.is_feature_enabled(feature):
                enabled_features.append(feature)

        return enabled_features

    @staticmethod
    def set_feature_state(feature_name: str, enabled: bool) -> bool:
        """Set the state of a feature"""
        if feature_name in FeatureFlags.CORE_FEATURES:
            logger.warning(f"Cannot modify core feature: {feature_name}")
            return False

        if feature_name in FeatureFlags.EXPERIMENTAL_FEATURES:
            FeatureFlags.EXPERIMENTAL_FEATURES[feature_name] = enabled
            logger.info(f"Feature {feature_name} set to {enabled}")
            return True

        logger.warning(f"Unknown feature: {feature_name}")
        return False


def is_feature_enabled(feature_name: str) -> bool:
    return FeatureFlags.is_feature_enabled(feature_name)


def enable_feature(feature_name: str) -> bool:
    return FeatureFlags.set_feature_state(feature_name, True)


def disable_feature(feature_name: str) -> bool:
    return FeatureFlags.set_feature_state(feature_name, False)
