import time
import logging
from typing import Optional

from firebase_admin import auth
from firebase_admin.exceptions import FirebaseError

from modules.core.models import Plan


class ClaimsService:
    """
    Propagates a reconciled plan into the principal's auth-token claims.

    Best effort: the identity platform is a different system from the document
    store, so this never takes part in the reconciliation transaction. Clients
    observe the new claim on their next forced token refresh.
    """

    def __init__(self, app=None):
        self._app = app
        self.logger = logging.getLogger(__name__)

    def _get_app(self):
        if self._app is None:
            from modules.core.firebase_manager import FirebaseManager
            self._app = FirebaseManager.get_firebase_app()
        return self._app

    def issue(self, user_id: str, plan: Plan) -> Optional[str]:
        """
        Set the plan claim for user_id, keeping any other custom claims.

        Returns:
            None on success, otherwise the failure reason
        """
        try:
            app = self._get_app()
            user = auth.get_user(user_id, app=app)
            claims = dict(user.custom_claims or {})
            claims['plan'] = plan.value
            claims['planUpdatedAt'] = int(time.time())
            auth.set_custom_user_claims(user_id, claims, app=app)
        except (FirebaseError, ValueError, RuntimeError) as e:
            self.logger.warning(f"Failed to issue plan claim {plan.value} for user {user_id}: {str(e)}")
            return str(e) or e.__class__.__name__

        self.logger.info(f"Issued plan claim {plan.value} for user {user_id}")
        return None
