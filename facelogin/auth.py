import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from facelogin.activity import LOGIN_ACTION, ActivityLog
from facelogin.config import ACCESS_TOKEN_EXPIRE_HOURS, ALGORITHM, SECRET_KEY
from facelogin.dependencies import get_db
from facelogin.descriptor_store import DescriptorStore, UsernameTaken
from facelogin.face_matching import FaceMatcher, NoEnrolledUsers, NoMatch
from facelogin.models import User
from facelogin.schemas import MAX_PASSWORD_BYTES, FaceLoginRequest, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    # bcrypt rejects inputs over 72 bytes; such a password can never have been registered
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_access_token(user: User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    return jwt.encode({"sub": str(user.id), "exp": expire}, SECRET_KEY, algorithm=ALGORITHM)


def user_payload(user: User) -> dict:
    return {"id": user.id, "name": user.name, "username": user.username}


def auth_response(user: User) -> dict:
    return {"token": create_access_token(user), "user": user_payload(user)}


def register_user(data: RegisterRequest, db: Session, activity: ActivityLog):
    store = DescriptorStore(db)
    try:
        user = store.add_identity(
            name=data.name,
            username=data.username,
            password_hash=hash_password(data.password),
            descriptor=data.face_descriptor,
        )
    except UsernameTaken:
        raise HTTPException(status_code=400, detail="Username already exists")
    except Exception:
        logger.exception("Registration error")
        raise HTTPException(status_code=500, detail="Server error")

    activity.record(user.username, "register")
    return auth_response(user)


def login_user(data: LoginRequest, db: Session, activity: ActivityLog):
    user = DescriptorStore(db).find_by_username(data.username)
    # Same message for unknown user and wrong password
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    activity.record(user.username, LOGIN_ACTION, details={"method": "password"})
    return auth_response(user)


def face_login_user(data: FaceLoginRequest, db: Session, activity: ActivityLog):
    matcher = FaceMatcher(DescriptorStore(db))
    try:
        result = matcher.match(data.face_descriptor)
    except NoEnrolledUsers:
        raise HTTPException(status_code=400, detail="No users with face data found")
    except NoMatch:
        raise HTTPException(status_code=400, detail="Face not recognized")

    user = result.identity
    activity.record(user.username, LOGIN_ACTION, details={"method": "face"})
    return auth_response(user)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token, authorization denied")

    token = authorization.removeprefix("Bearer ")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = int(payload["sub"])
    except (JWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Token is not valid")

    user = DescriptorStore(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Token is not valid")
    return user
