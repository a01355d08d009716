"""
Credential store used by the authentication routes.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from berries.errors import NotFound, PersistenceError
from berries.models.user import User
from berries.services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Storage abstraction for login credentials."""

    def lookup(self, identity: str) -> User: ...
    def create(self, identity: str, password: Optional[str] = None, google_id: Optional[str] = None) -> User: ...


class DuplicateIdentity(Exception):
    """An account already exists for this identity."""


class SqlCredentialStore:
    """CredentialStore backed by the `users` table."""

    def __init__(self, db: Session):
        self.db = db

    def lookup(self, identity: str) -> User:
        try:
            user = self.db.query(User).filter(User.email == identity).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"credential lookup failed: {str(e)}") from e
        if user is None:
            raise NotFound(f"No account for {identity}")
        return user

    def create(self, identity: str, password: Optional[str] = None, google_id: Optional[str] = None) -> User:
        user = User(email=identity, google_id=google_id)
        if password is not None:
            user.password_hash, user.password_salt = hash_password(password)
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateIdentity(identity) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"credential creation failed: {str(e)}") from e
        self.db.refresh(user)
        logger.info(f"Created account for {identity}")
        return user

    def check_password(self, identity: str, password: str) -> bool:
        """True when ``identity`` has a local password matching ``password``."""
        try:
            user = self.lookup(identity)
        except NotFound:
            return False
        if not user.password_hash or not user.password_salt:
            return False
        return verify_password(password, user.password_hash, user.password_salt)
