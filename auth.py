import base64
import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import firebase_admin
from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth, credentials
from firebase_admin.exceptions import FirebaseError
from motor.motor_asyncio import AsyncIOMotorDatabase

from config import FB_SERVICE_KEY, FIREBASE_SERVICE_ACCOUNT
from database import USERS, get_db
from errors import ApiError

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Unauthorized Access!"
FORBIDDEN = "Forbidden Access!"

bearer_scheme = HTTPBearer(auto_error=False)


class FirebaseVerifier:
    """Verifies Firebase ID tokens issued to the web client."""

    def __init__(self, app: Optional[firebase_admin.App] = None):
        self.app = app

    def verify(self, token: str) -> Dict[str, Any]:
        return firebase_auth.verify_id_token(token, app=self.app)


def load_credentials() -> credentials.Certificate:
    if FB_SERVICE_KEY:
        decoded = base64.b64decode(FB_SERVICE_KEY).decode("utf-8")
        return credentials.Certificate(json.loads(decoded))
    return credentials.Certificate(FIREBASE_SERVICE_ACCOUNT)


@lru_cache
def get_identity() -> FirebaseVerifier:
    try:
        app = firebase_admin.get_app()
    except ValueError:
        app = firebase_admin.initialize_app(load_credentials())
        logger.info("Firebase Admin initialized for project %s", app.project_id)
    return FirebaseVerifier(app)


async def verify_token(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: FirebaseVerifier = Depends(get_identity),
) -> str:
    """Resolve the bearer token to the verified email of its owner."""
    if creds is None or not creds.credentials:
        raise ApiError(401, UNAUTHORIZED)
    try:
        decoded = await run_in_threadpool(identity.verify, creds.credentials)
    except (ValueError, FirebaseError) as e:
        logger.warning("Token verification failed: %s", e)
        raise ApiError(401, UNAUTHORIZED)
    email = decoded.get("email")
    if not email:
        raise ApiError(401, UNAUTHORIZED)
    return email


async def require_admin(
    token_email: str = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> str:
    user = await db[USERS].find_one({"email": token_email}, {"role": 1})
    if not user or user.get("role") != "admin":
        raise ApiError(403, FORBIDDEN)
    return token_email
