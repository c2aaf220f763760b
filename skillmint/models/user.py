"""User model: identity and referral fields used by the money subsystem."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from skillmint.database import Base
from skillmint.db_types import UUIDType


class UserRole(str, Enum):
    STUDENT = "student"
    INSTRUCTOR = "instructor"
    AFFILIATE = "affiliate"
    ADMIN = "admin"


# Roles allowed to refer buyers and earn commissions
REFERRER_ROLES = {UserRole.AFFILIATE.value, UserRole.INSTRUCTOR.value, UserRole.ADMIN.value}


class User(Base):
    """
    A marketplace user.

    Balances live on the user's Wallet row, looked up by user_id.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=UserRole.STUDENT.value,
        comment="student, instructor, affiliate, admin"
    )

    # Referral program
    referral_code: Mapped[Optional[str]] = mapped_column(
        String(10),
        unique=True,
        nullable=True,
        index=True
    )
    referred_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Direct referrer; the chain upward must be acyclic"
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def can_refer(self) -> bool:
        return self.is_active and self.role in REFERRER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<User(email='{self.email}', role='{self.role}')>"
