import firebase_admin
from firebase_admin import credentials, firestore
import pyrebase
import logging
from config.environment import Environment

logger = logging.getLogger(__name__)

class FirebaseManager:
    """Manages Firebase initialization and operations."""

    _initialized = False
    _db = None
    _firebase = None
    _firebase_app = None

    @staticmethod
    def _build_credentials():
        """Service account from a key file, or from inline environment fields"""
        account = Environment.FIREBASE_SERVICE_ACCOUNT
        if account.get('path'):
            return credentials.Certificate(account['path'])
        if account.get('private_key'):
            return credentials.Certificate({
                "type": "service_account",
                "project_id": account['project_id'],
                "private_key_id": account['private_key_id'],
                "private_key": account['private_key'].replace("\\n", "\n"),
                "client_email": account['client_email'],
                "client_id": account['client_id'],
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
                "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
                "client_x509_cert_url": account['client_x509_cert_url']
            })
        # Fall back to application default credentials (Cloud Run, App Hosting)
        return credentials.ApplicationDefault()

    @classmethod
    def initialize(cls) -> bool:
        """Initialize the Admin SDK app and Firestore client"""
        if cls._initialized:
            return True

        try:
            try:
                cls._firebase_app = firebase_admin.get_app()
                logger.info("Using existing Firebase Admin SDK app")
            except ValueError:
                options = {}
                if Environment.FIREBASE_SERVICE_ACCOUNT.get('project_id'):
                    options['projectId'] = Environment.FIREBASE_SERVICE_ACCOUNT['project_id']
                cls._firebase_app = firebase_admin.initialize_app(cls._build_credentials(), options)
                logger.info("Firebase Admin SDK initialized successfully")

            cls._db = firestore.client(cls._firebase_app)
            cls._initialized = True
            return True
        except Exception as e:
            logger.error(f"Error initializing Firebase: {str(e)}")
            return False

    @classmethod
    def get_firebase_app(cls):
        """Get Firebase Admin SDK app instance."""
        if not cls._initialized and not cls.initialize():
            raise RuntimeError("Failed to initialize Firebase")
        return cls._firebase_app

    @classmethod
    def get_firestore_client(cls):
        """Get Firestore client"""
        if not cls._initialized and not cls.initialize():
            raise RuntimeError("Failed to initialize Firebase")
        return cls._db

    @classmethod
    def get_pyrebase_auth(cls):
        """Client-side auth used to sign users in and refresh their ID tokens"""
        if cls._firebase is None:
            config = Environment.get_firebase_config()
            required_keys = ["apiKey", "authDomain", "projectId"]
            missing_keys = [key for key in required_keys if not config.get(key)]
            if missing_keys:
                raise ValueError(f"Missing required Firebase config values: {', '.join(missing_keys)}")
            cls._firebase = pyrebase.initialize_app(config)
        return cls._firebase.auth()

    @classmethod
    def cleanup(cls):
        """Clean up Firebase resources"""
        if cls._firebase_app:
            firebase_admin.delete_app(cls._firebase_app)
            logger.info("Successfully cleaned up Firebase resources")
        cls._firebase_app = None
        cls._db = None
        cls._firebase = None
        cls._initialized = False
