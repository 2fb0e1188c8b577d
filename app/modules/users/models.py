from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from typing import Optional
from app.core.database import Base
import enum


class UserRole(str, enum.Enum):
    """Closed set of user roles"""
    BORROWER = "borrower"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value) -> Optional["UserRole"]:
        """Case-insensitive lookup; None when the value is not a known role"""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class User(Base):
    """Registered borrower or administrator"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.BORROWER.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    loans = relationship("Loan", back_populates="user", lazy="raise")
    transactions = relationship("Transaction", back_populates="user", lazy="raise")

    @property
    def user_role(self) -> Optional[UserRole]:
        return UserRole.parse(self.role)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
