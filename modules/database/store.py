"""
Document store used by the entitlement, admission and event-log code.

All shared mutable documents (Entitlement Record, Bucket Counter) are written
through run_transaction. The store interface lets the same services run against
Firestore in production and an in-memory store in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
import logging

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from modules.core.error_handler import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Message google-cloud-firestore raises once a transaction exhausts its attempts
_EXHAUSTED_ATTEMPTS_PREFIX = "Failed to commit transaction"


def entitlement_path(uid: str) -> str:
    return f"users/{uid}"


def bucket_counter_path(uid: str) -> str:
    return f"users/{uid}/meta/bucketCounts"


def buckets_collection(uid: str) -> str:
    return f"users/{uid}/budgets"


def bucket_path(uid: str, bucket_id: str) -> str:
    return f"{buckets_collection(uid)}/{bucket_id}"


EVENTS_COLLECTION = "billing_events"
DIVERGENCES_COLLECTION = "claim_divergences"


def event_path(event_id: str) -> str:
    return f"{EVENTS_COLLECTION}/{event_id}"


def divergence_path(uid: str) -> str:
    return f"{DIVERGENCES_COLLECTION}/{uid}"


class Transaction(ABC):
    """Reads must all happen before the first write."""

    @abstractmethod
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def query(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        pass

    @abstractmethod
    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass


class DocumentStore(ABC):

    @abstractmethod
    def get(self, path: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def set(self, path: str, data: Dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        pass

    @abstractmethod
    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        pass

    @abstractmethod
    def new_id(self, collection: str) -> str:
        pass

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T], max_attempts: int = 5) -> T:
        """
        Run fn atomically. Conflicting transactions on the same documents are
        serialised by the backend; fn may be invoked more than once.

        Raises:
            TransientStorageError: contention retries exhausted or backend unavailable
            Any exception raised by fn, after rolling back
        """
        pass


class FirestoreTransaction(Transaction):
    def __init__(self, db, transaction):
        self._db = db
        self._transaction = transaction

    def get(self, path):
        snapshot = self._db.document(path).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def query(self, collection):
        return [(doc.id, doc.to_dict()) for doc in self._db.collection(collection).stream(transaction=self._transaction)]

    def set(self, path, data, merge=False):
        self._transaction.set(self._db.document(path), data, merge=merge)

    def delete(self, path):
        self._transaction.delete(self._db.document(path))


class FirestoreStore(DocumentStore):
    """DocumentStore backed by Cloud Firestore"""

    def __init__(self, db=None):
        if db is None:
            from modules.core.firebase_manager import FirebaseManager
            db = FirebaseManager.get_firestore_client()
        self._db = db

    def get(self, path):
        try:
            snapshot = self._db.document(path).get()
        except google_exceptions.GoogleAPICallError as e:
            raise TransientStorageError(f"Failed to read {path}", details=str(e)) from e
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, path, data, merge=False):
        try:
            self._db.document(path).set(data, merge=merge)
        except google_exceptions.GoogleAPICallError as e:
            raise TransientStorageError(f"Failed to write {path}", details=str(e)) from e

    def delete(self, path):
        try:
            self._db.document(path).delete()
        except google_exceptions.GoogleAPICallError as e:
            raise TransientStorageError(f"Failed to delete {path}", details=str(e)) from e

    def list_documents(self, collection):
        try:
            return [(doc.id, doc.to_dict()) for doc in self._db.collection(collection).stream()]
        except google_exceptions.GoogleAPICallError as e:
            raise TransientStorageError(f"Failed to list {collection}", details=str(e)) from e

    def new_id(self, collection):
        return self._db.collection(collection).document().id

    def run_transaction(self, fn, max_attempts=5):
        transaction = self._db.transaction(max_attempts=max_attempts)

        @firestore.transactional
        def _apply(transaction):
            return fn(FirestoreTransaction(self._db, transaction))

        try:
            return _apply(transaction)
        except google_exceptions.GoogleAPICallError as e:
            logger.warning(f"Transaction failed at the backend: {str(e)}")
            raise TransientStorageError("Document store unavailable", details=str(e)) from e
        except ValueError as e:
            if not str(e).startswith(_EXHAUSTED_ATTEMPTS_PREFIX):
                raise
            logger.warning(f"Transaction contention: {str(e)}")
            raise TransientStorageError("Transaction contention, retries exhausted", details=str(e)) from e
