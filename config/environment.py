"""
Environment configuration for the Budget Buckets application.
This file manages environment-specific settings and configurations.
"""

import os
from typing import Dict, Any
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

class Environment:
    """Environment configuration class"""

    # Application Settings
    APP_NAME = "Budget Buckets"
    APP_VERSION = "1.0.0"
    DEBUG_MODE = os.getenv('DEBUG_MODE', 'False').lower() == 'true'

    # Firebase web config (used by pyrebase for client sessions)
    FIREBASE_CONFIG = {
        'apiKey': os.getenv('FIREBASE_API_KEY'),
        'authDomain': os.getenv('FIREBASE_AUTH_DOMAIN'),
        'projectId': os.getenv('FIREBASE_PROJECT_ID'),
        'storageBucket': os.getenv('FIREBASE_STORAGE_BUCKET'),
        'messagingSenderId': os.getenv('FIREBASE_MESSAGING_SENDER_ID'),
        'appId': os.getenv('FIREBASE_APP_ID'),
        'databaseURL': os.getenv('FIREBASE_DATABASE_URL', '')
    }

    # Admin SDK credentials: either a key file or inline service account fields
    FIREBASE_SERVICE_ACCOUNT = {
        'path': os.getenv('GOOGLE_APPLICATION_CREDENTIALS'),
        'project_id': os.getenv('FIREBASE_PROJECT_ID'),
        'private_key_id': os.getenv('FIREBASE_PRIVATE_KEY_ID'),
        'private_key': os.getenv('FIREBASE_PRIVATE_KEY'),
        'client_email': os.getenv('FIREBASE_CLIENT_EMAIL'),
        'client_id': os.getenv('FIREBASE_CLIENT_ID'),
        'client_x509_cert_url': os.getenv('FIREBASE_CLIENT_X509_CERT_URL')
    }

    # Stripe Settings (secrets are re-read by the services that own them)
    STRIPE_SETTINGS = {
        'publishable_key': os.getenv('STRIPE_PUBLISHABLE_KEY'),
        'price_id': os.getenv('STRIPE_PLUS_PRICE_ID'),
        'portal_return_url': os.getenv('STRIPE_PORTAL_RETURN_URL', 'http://localhost:8080/app/account?billing=portal')
    }

    # Plan Settings
    PLAN_LIMITS = {
        'free_bucket_limit': int(os.getenv('FREE_BUCKET_LIMIT', '5'))
    }

    # Document store transactions
    TRANSACTION_SETTINGS = {
        'max_attempts': int(os.getenv('TRANSACTION_MAX_ATTEMPTS', '5'))
    }

    # Client plan synchronisation
    PLAN_SYNC_SETTINGS = {
        'min_refresh_interval': float(os.getenv('PLAN_MIN_REFRESH_INTERVAL', '30')),
        'action_marker_ttl': float(os.getenv('PLAN_ACTION_MARKER_TTL', '120'))
    }

    # Logging Settings
    LOGGING_CONFIG = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': os.getenv('LOG_FILE')
    }

    # Error Handling
    ERROR_HANDLING = {
        'max_retries': 3,
        'retry_delay': 1,
        'show_detailed_errors': DEBUG_MODE
    }

    @classmethod
    def is_production(cls):
        """Check if running in production environment"""
        return not cls.DEBUG_MODE

    @classmethod
    def get_setting(cls, key: str, default: Any = None) -> Any:
        """Get a setting value"""
        # Check environment variables first
        value = os.getenv(key)
        if value is not None:
            return value

        for group in (cls.PLAN_LIMITS, cls.TRANSACTION_SETTINGS,
                      cls.PLAN_SYNC_SETTINGS, cls.STRIPE_SETTINGS, cls.FIREBASE_CONFIG):
            if key in group:
                return group[key]

        return default

    @classmethod
    def validate_config(cls) -> bool:
        """Validate the configuration"""
        valid = True

        # Check required Firebase settings
        required_firebase = ['apiKey', 'authDomain', 'projectId']
        for key in required_firebase:
            if not cls.FIREBASE_CONFIG.get(key):
                logger.error(f"Missing required Firebase setting: {key}")
                valid = False

        # Webhook verification fails closed without a secret
        for key in ('STRIPE_SECRET_KEY', 'STRIPE_WEBHOOK_SECRET'):
            if not os.getenv(key):
                logger.error(f"Missing required Stripe setting: {key}")
                valid = False

        if cls.PLAN_LIMITS['free_bucket_limit'] < 0:
            logger.error("Invalid free bucket limit setting")
            valid = False

        if cls.TRANSACTION_SETTINGS['max_attempts'] < 1:
            logger.error("Invalid transaction max attempts setting")
            valid = False

        return valid

    @classmethod
    def get_firebase_config(cls):
        """Get Firebase configuration"""
        return cls.FIREBASE_CONFIG

    @classmethod
    def get_stripe_settings(cls) -> Dict[str, Any]:
        """Get Stripe settings"""
        return cls.STRIPE_SETTINGS.copy()

    @classmethod
    def get_free_bucket_limit(cls) -> int:
        return cls.PLAN_LIMITS['free_bucket_limit']

    @classmethod
    def get_max_transaction_attempts(cls) -> int:
        return cls.TRANSACTION_SETTINGS['max_attempts']

    @classmethod
    def get_plan_sync_settings(cls):
        """Get client plan synchronisation settings"""
        return cls.PLAN_SYNC_SETTINGS.copy()

    @classmethod
    def get_error_handling_settings(cls):
        """Get error handling settings"""
        return cls.ERROR_HANDLING
