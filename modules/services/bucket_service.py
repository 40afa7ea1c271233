from typing import Optional
import logging

from config.environment import Environment
from modules.core.error_handler import CapacityExceededError
from modules.core.models import Plan, Bucket, BucketPayload, AdmissionResult, utcnow
from modules.database.schema import BucketCounter
from modules.database.store import (
    DocumentStore,
    entitlement_path,
    bucket_counter_path,
    bucket_path,
    buckets_collection,
)


class _CapacityAbort(Exception):
    """Raised inside the transaction to roll it back when the cap is hit"""
    def __init__(self, total: int):
        self.total = total
        super().__init__(f"capacity reached at {total}")


class BucketService:
    """
    Admission control for bucket creation.

    The plan read, counter read, limit check, counter write and bucket write
    run in one transaction, so two concurrent creates for the same user can
    never both pass the check against the same counter value. The plan comes
    from the Entitlement Record, never from the possibly stale claim.
    """

    def __init__(self, store: DocumentStore, free_limit: Optional[int] = None,
                 max_attempts: Optional[int] = None):
        self.store = store
        self.free_limit = Environment.get_free_bucket_limit() if free_limit is None else free_limit
        self.max_attempts = max_attempts or Environment.get_max_transaction_attempts()
        self.logger = logging.getLogger(__name__)

    def try_create(self, user_id: str, payload: BucketPayload) -> AdmissionResult:
        """
        Create a bucket if the user's plan allows it.

        Returns:
            AdmissionResult; allowed=False when the Free cap is reached

        Raises:
            TransientStorageError: contention retries exhausted or store unavailable
        """
        bucket = Bucket(**payload.model_dump(exclude_none=True))
        if not payload.id:
            bucket.id = self.store.new_id(buckets_collection(user_id))

        def _create(txn):
            record = txn.get(entitlement_path(user_id)) or {}
            counter = txn.get(bucket_counter_path(user_id)) or {}
            existing = txn.get(bucket_path(user_id, bucket.id))

            plan = Plan.from_value(record.get('plan'))
            total = self._read_total(user_id, counter)

            if existing is not None:
                # Overwrite of a live bucket, the count does not move
                txn.set(bucket_path(user_id, bucket.id), bucket.to_document())
                return plan, total

            if plan == Plan.FREE and total + 1 > self.free_limit:
                raise _CapacityAbort(total)

            txn.set(bucket_path(user_id, bucket.id), bucket.to_document())
            txn.set(bucket_counter_path(user_id), {'total': total + 1, 'updatedAt': utcnow()}, merge=True)
            return plan, total + 1

        try:
            plan, total = self.store.run_transaction(_create, max_attempts=self.max_attempts)
        except _CapacityAbort as e:
            self.logger.info(f"Bucket creation refused for user {user_id}: {e.total} of {self.free_limit} used")
            return AdmissionResult(allowed=False, plan=Plan.FREE, total=e.total, limit=self.free_limit)

        self.logger.info(f"Created bucket {bucket.id} for user {user_id}, total now {total}")
        return AdmissionResult(
            allowed=True,
            plan=plan,
            total=total,
            limit=self.free_limit if plan == Plan.FREE else None,
            bucket=bucket
        )

    def on_delete(self, user_id: str, bucket_id: str) -> int:
        """
        Delete a bucket and decrement the counter in one transaction.

        Returns:
            The counter value after the delete
        """
        def _delete(txn):
            counter = txn.get(bucket_counter_path(user_id)) or {}
            existing = txn.get(bucket_path(user_id, bucket_id))
            total = self._read_total(user_id, counter)

            if existing is None:
                return total

            new_total = total - 1
            if new_total < 0:
                self.logger.error(
                    f"Bucket counter drift for user {user_id}: deleting {bucket_id} with total {total}, clamping to 0")
                new_total = 0

            txn.delete(bucket_path(user_id, bucket_id))
            txn.set(bucket_counter_path(user_id), {'total': new_total, 'updatedAt': utcnow()}, merge=True)
            return new_total

        total = self.store.run_transaction(_delete, max_attempts=self.max_attempts)
        self.logger.info(f"Deleted bucket {bucket_id} for user {user_id}, total now {total}")
        return total

    def create_bucket(self, user_id: str, payload: BucketPayload) -> Bucket:
        """
        Create a bucket for the UI layer.

        Raises:
            CapacityExceededError: the Free plan cap is reached
        """
        result = self.try_create(user_id, payload)
        if not result.allowed:
            raise CapacityExceededError(result.plan.value, result.total, result.limit)
        return result.bucket

    def delete_bucket(self, user_id: str, bucket_id: str) -> None:
        self.on_delete(user_id, bucket_id)

    def get_bucket_count(self, user_id: str) -> int:
        counter = BucketCounter.from_document(user_id, self.store.get(bucket_counter_path(user_id)))
        return max(counter.total, 0)

    def recount(self, user_id: str) -> int:
        """
        Out-of-band repair: set the counter to the number of live buckets.

        Returns:
            The corrected total
        """
        def _recount(txn):
            counter = txn.get(bucket_counter_path(user_id)) or {}
            live = len(txn.query(buckets_collection(user_id)))
            stored = int(counter.get('total') or 0)
            if stored != live:
                self.logger.warning(f"Bucket counter drift for user {user_id}: stored {stored}, live {live}")
                txn.set(bucket_counter_path(user_id), {'total': live, 'updatedAt': utcnow()}, merge=True)
            return live

        return self.store.run_transaction(_recount, max_attempts=self.max_attempts)

    def _read_total(self, user_id, counter) -> int:
        total = BucketCounter.from_document(user_id, counter).total
        if total < 0:
            self.logger.error(f"Bucket counter drift for user {user_id}: negative total {total}, treating as 0")
            return 0
        return total
