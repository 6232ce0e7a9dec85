import os
from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from core.config import logger, ADMIN_EMAILS
from core.database import get_db
from core.errors import Forbidden, Unauthorized, ValidationError
from models.user import User


firebase_enabled = False
try:
    import firebase_admin
    from firebase_admin import auth as fb_auth, credentials as fb_credentials

    FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID", "")
    FIREBASE_SERVICE_ACCOUNT_JSON = os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON", "")
    FIREBASE_SERVICE_ACCOUNT_JSON_PATH = (os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH", "") or "").strip().strip('"').strip("'")

    if not getattr(firebase_admin, "_apps", []):
        if FIREBASE_SERVICE_ACCOUNT_JSON:
            import json
            cred = fb_credentials.Certificate(json.loads(FIREBASE_SERVICE_ACCOUNT_JSON))
            firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID} if FIREBASE_PROJECT_ID else None)
        elif FIREBASE_SERVICE_ACCOUNT_JSON_PATH and os.path.isfile(FIREBASE_SERVICE_ACCOUNT_JSON_PATH):
            cred = fb_credentials.Certificate(FIREBASE_SERVICE_ACCOUNT_JSON_PATH)
            firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID} if FIREBASE_PROJECT_ID else None)
        else:
            firebase_admin.initialize_app(options={"projectId": FIREBASE_PROJECT_ID} if FIREBASE_PROJECT_ID else None)
    firebase_enabled = True
    logger.info("Firebase Admin initialized")
except Exception as ex:
    logger.warning(f"Firebase Admin not initialized: {ex}")
    fb_auth = None  # type: ignore


def _decode_token(request: Request) -> Optional[dict]:
    auth_header = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth_header or not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        return None
    if not firebase_enabled or not fb_auth:
        return None
    try:
        return fb_auth.verify_id_token(token)
    except Exception as ex:
        logger.warning(f"Token verification failed: {ex}")
        return None


def _load_user(db: Session, decoded: dict) -> User:
    """Return the local projection of the identity, creating it on first sight."""
    uid = decoded.get("uid")
    user = db.query(User).filter(User.uid == uid).first()
    if user:
        return user
    email = (decoded.get("email") or "").strip().lower()
    user = User(
        uid=uid,
        email=email or f"{uid}@users.noreply",
        display_name=decoded.get("name"),
        email_verified=bool(decoded.get("email_verified")),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"[auth] created user projection for {uid}")
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    decoded = _decode_token(request)
    if not decoded or not decoded.get("uid"):
        return None
    return _load_user(db, decoded)


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if not user:
        raise Unauthorized("Authentication required")
    return user


def is_admin(user: Optional[User]) -> bool:
    if not user:
        return False
    if user.is_admin:
        return True
    email = (user.email or "").lower()
    return bool(email and email in ADMIN_EMAILS)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise Forbidden("Administrator access required")
    return user


def guest_owner_id(session_id: str) -> str:
    return f"guest:{session_id.strip()}"


def get_cart_owner(request: Request, user: Optional[User] = Depends(get_optional_user)) -> str:
    """Resolve the cart identity: the user uid, or the anonymous X-Cart-Session."""
    if user:
        return user.uid
    session_id = (request.headers.get("X-Cart-Session") or request.headers.get("x-cart-session") or "").strip()
    if not session_id:
        raise Unauthorized("Sign in or provide an X-Cart-Session header")
    if len(session_id) > 100:
        raise ValidationError("Cart session id is too long")
    return guest_owner_id(session_id)
