"""
User model holding login credentials.
"""
from sqlalchemy import Column, String, DateTime
from berries.database import Base
from berries.models.chat_session import utcnow
import uuid


class User(Base):
    """
    Credential record for one identity.

    Local accounts carry a PBKDF2 `password_hash`/`password_salt`; OAuth
    accounts carry the provider subject in `google_id` and no password.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=True)
    password_salt = Column(String, nullable=True)
    google_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
