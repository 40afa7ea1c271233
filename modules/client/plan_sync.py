"""
Client-side plan cache for a signed-in session.

The plan claim in the ID token is the cheap source of the user's plan, but it
only changes after the server reconciles a payment and the client forces a
token refresh. When the refreshed claim is missing or still says Free, the
Entitlement Record is read directly, since the record is authoritative and the
claim may simply not have propagated yet.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, MutableMapping, Optional

import requests
from firebase_admin import auth
from firebase_admin.exceptions import FirebaseError

from config.environment import Environment
from modules.core.error_handler import AuthenticationError, TransientStorageError
from modules.core.models import Plan
from modules.database.schema import ClaimSnapshot
from modules.database.store import DocumentStore, entitlement_path

logger = logging.getLogger(__name__)

# Query parameters set on return from checkout or the billing portal
NAVIGATION_MARKERS = ('upgraded', 'billing', 'upgrade')
BILLING_ACTION = 'billing'


class FirebaseIdentitySession:
    """A pyrebase sign-in result that can force re-issuance of its ID token"""

    def __init__(self, user: Dict[str, Any], pyrebase_auth=None, app=None):
        self._user = dict(user)
        self._auth = pyrebase_auth
        self._app = app

    @property
    def uid(self) -> str:
        return self._user.get('localId') or self._user.get('userId')

    @property
    def id_token(self) -> Optional[str]:
        return self._user.get('idToken')

    def force_refresh(self) -> Dict[str, Any]:
        """
        Exchange the refresh token for a new ID token and return its claims.

        Raises:
            AuthenticationError: the refresh or the token verification failed
        """
        from modules.core.firebase_manager import FirebaseManager

        try:
            auth_client = self._auth or FirebaseManager.get_pyrebase_auth()
            refreshed = auth_client.refresh(self._user['refreshToken'])
            self._user['idToken'] = refreshed['idToken']
            self._user['refreshToken'] = refreshed['refreshToken']
            app = self._app or FirebaseManager.get_firebase_app()
            return auth.verify_id_token(refreshed['idToken'], app=app)
        except (requests.exceptions.RequestException, FirebaseError, ValueError, KeyError, RuntimeError) as e:
            raise AuthenticationError(f"Token refresh failed: {str(e)}", error_code="token_refresh_failed") from e


@dataclass
class PlanCache:
    plan: Plan
    last_refreshed_at: Optional[float] = None


class PlanSynchronizer:
    """
    Keeps the effective plan for one session.

    Refreshes on session change, on the page regaining focus, on a billing
    return marker and on explicit request. A refresh already in flight turns
    further triggers into no-ops instead of queueing them.
    """

    def __init__(self, store: DocumentStore, min_refresh_interval: Optional[float] = None,
                 action_marker_ttl: Optional[float] = None, clock: Callable[[], float] = time.time):
        settings = Environment.get_plan_sync_settings()
        self.store = store
        self.min_refresh_interval = settings['min_refresh_interval'] if min_refresh_interval is None else min_refresh_interval
        self.action_marker_ttl = settings['action_marker_ttl'] if action_marker_ttl is None else action_marker_ttl
        self._clock = clock
        self.session = None
        self.cache: Optional[PlanCache] = None
        self._watchers: List[Callable[[Plan], None]] = []
        self._refreshing = False
        self._action_markers: Dict[str, float] = {}

    def watch(self, callback: Callable[[Plan], None]) -> Callable[[], None]:
        """Register callback for plan changes. Returns a function that unregisters it."""
        self._watchers.append(callback)

        def _unwatch():
            if callback in self._watchers:
                self._watchers.remove(callback)
        return _unwatch

    def get_plan(self) -> Plan:
        return self.cache.plan if self.cache else Plan.FREE

    def is_paid(self) -> bool:
        return self.get_plan() == Plan.PAID

    def on_session_changed(self, session) -> Plan:
        """Sign-in or token rotation (session given) or sign-out (None)"""
        if session is None:
            previous = self.get_plan()
            self.session = None
            self.cache = None
            self._action_markers.clear()
            if previous != Plan.FREE:
                self._notify(Plan.FREE)
            return Plan.FREE

        if self.session is None or getattr(self.session, 'uid', None) != getattr(session, 'uid', None):
            self.cache = PlanCache(plan=Plan.FREE)
        self.session = session
        return self.refresh_plan()

    def on_visibility_changed(self, visible: bool) -> Plan:
        """Focus regained, e.g. after finishing a billing action in another tab"""
        if not visible or self.session is None:
            return self.get_plan()
        if self.cache and self.cache.last_refreshed_at is not None:
            if self._clock() - self.cache.last_refreshed_at < self.min_refresh_interval:
                return self.get_plan()
        return self.refresh_plan()

    def consume_navigation_markers(self, params: MutableMapping[str, Any]) -> bool:
        """
        Handle a billing return. Markers are removed from params so a reload
        does not trigger another refresh.

        Returns:
            True if a marker was found
        """
        found = [marker for marker in NAVIGATION_MARKERS if marker in params]
        if not found:
            return False

        for marker in found:
            params.pop(marker, None)
        self.mark_action_completed(BILLING_ACTION)
        if self.session is not None:
            self.refresh_plan()
        return True

    def mark_action_completed(self, action: str) -> None:
        """Remember for a short while that the user just completed action"""
        self._action_markers[action] = self._clock()

    def recent_action(self, action: str) -> bool:
        marked_at = self._action_markers.get(action)
        if marked_at is None:
            return False
        if self._clock() - marked_at > self.action_marker_ttl:
            del self._action_markers[action]
            return False
        return True

    def clear_action(self, action: str) -> None:
        self._action_markers.pop(action, None)

    def refresh_plan(self) -> Plan:
        """Force a token refresh and recompute the plan"""
        if self._refreshing:
            logger.debug("Plan refresh already in progress, skipping")
            return self.get_plan()

        if self.session is None:
            return self.on_session_changed(None)

        self._refreshing = True
        try:
            claims = None
            try:
                claims = self.session.force_refresh()
            except AuthenticationError as e:
                logger.warning(f"Failed to refresh plan claim: {e.message}")

            claim_plan = ClaimSnapshot.from_claims(claims).plan
            plan = claim_plan
            if claim_plan is None or claim_plan == Plan.FREE:
                plan = self._read_record_plan(claim_plan)
            self._update(plan)
        finally:
            self._refreshing = False
        return self.get_plan()

    def _read_record_plan(self, claim_plan: Optional[Plan]) -> Plan:
        uid = self.session.uid
        try:
            record = self.store.get(entitlement_path(uid))
        except TransientStorageError as e:
            logger.warning(f"Entitlement record unavailable for {uid}: {e.message}")
            return claim_plan or self.get_plan()

        record_plan = Plan.from_value((record or {}).get('plan'))
        if record_plan != (claim_plan or Plan.FREE):
            logger.info(
                f"Plan claim for {uid} lags the entitlement record "
                f"(claim={claim_plan.value if claim_plan else None}, record={record_plan.value})")
        return record_plan

    def _update(self, plan: Plan) -> None:
        previous = self.get_plan()
        self.cache = PlanCache(plan=plan, last_refreshed_at=self._clock())
        if plan != previous:
            self._notify(plan)

    def _notify(self, plan: Plan) -> None:
        for watcher in list(self._watchers):
            watcher(plan)
