"""
Request authentication for the HTTP API.

Users authenticate with a Firebase ID token (Authorization: Bearer <token>).
Operator endpoints take a shared secret in X-Admin-Key, compared against the
ADMIN_API_KEY environment variable.
"""

import os
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Header, HTTPException
from firebase_admin import auth
from firebase_admin.exceptions import FirebaseError

from modules.core.firebase_manager import FirebaseManager

security_logger = logging.getLogger('security')


@dataclass
class AuthenticatedUser:
    uid: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def get_current_user(authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    """Verify the bearer ID token"""
    if not authorization or not authorization.startswith('Bearer '):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization[len('Bearer '):].strip()
    try:
        claims = auth.verify_id_token(token, app=FirebaseManager.get_firebase_app())
    except (FirebaseError, ValueError) as e:
        security_logger.warning(f"Rejected ID token: {str(e)}")
        raise HTTPException(status_code=401, detail="Unauthorized")

    return AuthenticatedUser(uid=claims['uid'], email=claims.get('email'), claims=claims)


def require_admin(x_admin_key: Optional[str] = Header(None)) -> str:
    """Operator check. Unconfigured key disables the admin surface."""
    expected = os.getenv('ADMIN_API_KEY')
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key.strip(), expected):
        security_logger.warning("Rejected admin request with invalid X-Admin-Key")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return 'admin'
