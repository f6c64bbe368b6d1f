"""Persistence of face descriptors alongside identity records."""

import json
import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from facelogin.models import User

logger = logging.getLogger(__name__)


class UsernameTaken(Exception):
    """Raised when a username is already registered."""


def encode_descriptor(descriptor: Sequence[float]) -> str:
    return json.dumps([float(value) for value in descriptor])


def decode_descriptor(raw) -> List[float]:
    """
    Decode a descriptor column value back into a list of floats.

    Some drivers hand text columns back as ``memoryview``; those are decoded
    as UTF-8 first. Missing values decode to an empty list.
    """
    if raw is None:
        return []
    if isinstance(raw, memoryview):
        raw = raw.tobytes().decode("utf-8")
    values = json.loads(raw)
    if not isinstance(values, list):
        raise ValueError("Stored face descriptor is not a list")
    return [float(value) for value in values]


class DescriptorStore:
    """Identity records and their enrolled descriptors, backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def all_enrolled_descriptors(self) -> List[Tuple[User, List[float]]]:
        """
        Return every identity with a present, non-empty descriptor.

        Rows whose descriptor cannot be decoded are skipped so that one bad
        record never blocks face login for everyone else.
        """
        users = (
            self.db.query(User)
            .filter(User.face_descriptor.isnot(None))
            .order_by(User.id)
            .all()
        )

        enrolled = []
        for user in users:
            try:
                descriptor = decode_descriptor(user.face_descriptor)
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable face descriptor for user {user.id}: {e}")
                continue
            if descriptor:
                enrolled.append((user, descriptor))
        return enrolled

    def find_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    def get(self, user_id: int) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def add_identity(
        self,
        name: str,
        username: str,
        password_hash: str,
        descriptor: Sequence[float],
    ) -> User:
        """
        Create an identity with its descriptor in a single commit.

        Raises:
            UsernameTaken: if the username is already registered
        """
        if self.find_by_username(username):
            raise UsernameTaken(username)

        user = User(
            name=name,
            username=username,
            password_hash=password_hash,
            face_descriptor=encode_descriptor(descriptor),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same username
            self.db.rollback()
            raise UsernameTaken(username)
        self.db.refresh(user)

        logger.info(f"Registered user {user.username} (id={user.id}, descriptor length={len(descriptor)})")
        return user
