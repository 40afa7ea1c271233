"""
Streamlit binding for the plan synchronizer.

The synchronizer lives in st.session_state for the lifetime of the browser
session. Every script run is treated as the page regaining focus (throttled by
the synchronizer), and billing return markers are consumed from the query string.
"""

from typing import Dict, Any, Optional
import streamlit as st

from modules.client.plan_sync import PlanSynchronizer, FirebaseIdentitySession
from modules.core.models import Plan
from modules.database.store import DocumentStore

_STATE_KEY = 'plan_synchronizer'


def get_plan_synchronizer(store: Optional[DocumentStore] = None) -> PlanSynchronizer:
    """Get the session's synchronizer, creating it on first use"""
    if _STATE_KEY not in st.session_state:
        if store is None:
            from modules.database.store import FirestoreStore
            store = FirestoreStore()
        st.session_state[_STATE_KEY] = PlanSynchronizer(store)
    return st.session_state[_STATE_KEY]


def sign_in(user: Dict[str, Any], store: Optional[DocumentStore] = None) -> Plan:
    """Attach a pyrebase sign-in result and load its plan"""
    synchronizer = get_plan_synchronizer(store)
    return synchronizer.on_session_changed(FirebaseIdentitySession(user))


def sign_out() -> None:
    synchronizer = st.session_state.get(_STATE_KEY)
    if synchronizer is not None:
        synchronizer.on_session_changed(None)
        del st.session_state[_STATE_KEY]


def sync_plan_on_load() -> Plan:
    """Call at the top of every page"""
    synchronizer = get_plan_synchronizer()
    if synchronizer.consume_navigation_markers(st.query_params):
        return synchronizer.get_plan()
    return synchronizer.on_visibility_changed(True)


def get_plan() -> Plan:
    return get_plan_synchronizer().get_plan()


def refresh_plan() -> Plan:
    """Manual "refresh plan" action"""
    return get_plan_synchronizer().refresh_plan()
