"""FastAPI dependencies: identity, store and relay."""
import logging
from typing import Optional

import firebase_admin
from fastapi import Header, HTTPException, Request, status
from firebase_admin import auth as fb_auth
from firebase_admin import credentials

from mental_buddy.config import settings
from mental_buddy.services.relay import MessageRelay
from mental_buddy.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def init_firebase() -> Optional[firebase_admin.App]:
    """
    Initialize the Firebase Admin app once per process.

    Uses the service-account file from FIREBASE_CREDENTIALS when set,
    application default credentials otherwise.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS) if settings.FIREBASE_CREDENTIALS else None
    return firebase_admin.initialize_app(cred, options)


def get_current_user(authorization: str = Header(default="")) -> str:
    """
    Resolve the signed-in user from a Firebase ID token.

    Returns:
        The token's uid

    Raises:
        HTTPException: 401 if the header is missing or the token is invalid
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        decoded = fb_auth.verify_id_token(token, check_revoked=True)
    except (ValueError, fb_auth.InvalidIdTokenError, fb_auth.RevokedIdTokenError,
            fb_auth.UserDisabledError, fb_auth.CertificateFetchError) as e:
        logger.warning(f"Rejected ID token: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )

    uid = decoded.get("uid")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )
    return uid


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_relay(request: Request) -> MessageRelay:
    return request.app.state.relay
