from typing import Dict, Any
from modules.database.store import DocumentStore, FirestoreStore
from modules.services.claims_service import ClaimsService
from modules.services.entitlement_service import EntitlementService
from modules.services.bucket_service import BucketService
from modules.services.payment_service import PaymentService
from modules.services.webhook_handler import WebhookHandler
from modules.services.admin_service import AdminService

class ServiceContainer:
    _instance = None
    _services: Dict[str, Any] = {}

    def __new__(cls, store: DocumentStore = None):
        if cls._instance is None:
            cls._instance = super(ServiceContainer, cls).__new__(cls)
        return cls._instance

    def __init__(self, store: DocumentStore = None):
        if not self._services:
            self._initialize_services(store)

    def _initialize_services(self, store: DocumentStore = None):
        """Initialize all services"""
        store = store or FirestoreStore()
        self._services['store'] = store
        self._services['claims'] = ClaimsService()
        self._services['entitlements'] = EntitlementService(store, self._services['claims'])
        self._services['buckets'] = BucketService(store)
        self._services['payments'] = PaymentService(store)
        self._services['webhooks'] = WebhookHandler(store, self._services['entitlements'])
        self._services['admin'] = AdminService(
            self._services['entitlements'],
            self._services['payments'],
            self._services['buckets']
        )

    @classmethod
    def reset(cls):
        """Drop the singleton and its services"""
        cls._instance = None
        cls._services.clear()

    def get_service(self, service_name: str) -> Any:
        """Get a service by name"""
        if service_name not in self._services:
            raise ValueError(f"Service {service_name} not found")
        return self._services[service_name]

    @property
    def store(self) -> DocumentStore:
        return self.get_service('store')

    @property
    def entitlements(self) -> EntitlementService:
        return self.get_service('entitlements')

    @property
    def buckets(self) -> BucketService:
        return self.get_service('buckets')

    @property
    def payments(self) -> PaymentService:
        return self.get_service('payments')

    @property
    def webhooks(self) -> WebhookHandler:
        return self.get_service('webhooks')

    @property
    def admin(self) -> AdminService:
        return self.get_service('admin')


def get_services() -> ServiceContainer:
    """FastAPI dependency"""
    return ServiceContainer()
