"""
User model mirroring the identities issued by the auth service.
"""

import enum
from typing import List, TYPE_CHECKING

from sqlalchemy import Boolean, Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .attendee import Attendee


class UserRole(enum.Enum):
    """Enumeration for user roles."""
    USER = "user"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class User(Base):
    """User model used for organizer and attendee identity."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda roles: [r.value for r in roles]),
        default=UserRole.USER,
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    registrations: Mapped[List["Attendee"]] = relationship(
        "Attendee",
        back_populates="user"
    )

    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
    )

    @property
    def is_admin(self) -> bool:
        """Admins may act on any event regardless of organizer membership."""
        return self.role == UserRole.ADMIN

    @property
    def can_organize(self) -> bool:
        """Check if the user may create events."""
        return self.role in (UserRole.ORGANIZER, UserRole.ADMIN)

    def __repr__(self) -> str:
        """String representation of the user."""
        return f"<User(id={self.id}, email='{self.email}', role={self.role.value})>"
