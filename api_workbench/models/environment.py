"""
Environment and Variable models for stored environment configurations.

Environments contain variables that are substituted into requests,
allowing the same request templates to work across different environments
(e.g., development, staging, production).
"""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import String, Boolean, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..database import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Environment(Base):
    """
    SQLAlchemy model for environments.

    Only one environment can be active at a time. Deleting an environment
    cascades to all its variables.

    Attributes:
        id: Unique identifier for the environment
        name: Human-readable name for the environment
        is_active: Whether this environment is currently active
        created_at: Timestamp when the environment was created
        updated_at: Timestamp when the environment was last updated
        variables: Variables in insertion order
    """
    __tablename__ = "environments"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=_utc_now, onupdate=_utc_now)

    # Relationship with cascade delete; id order keeps the list order stable
    variables: Mapped[List["Variable"]] = relationship(
        "Variable",
        back_populates="environment",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Variable.id",
    )


class Variable(Base):
    """
    SQLAlchemy model for environment variables.

    Variables are key-value pairs referenced in requests with the
    {{variable_name}} placeholder syntax. Disabled variables are kept but
    never substituted.
    """
    __tablename__ = "variables"

    id: Mapped[int] = mapped_column(primary_key=True)
    environment_id: Mapped[int] = mapped_column(
        ForeignKey("environments.id", ondelete="CASCADE")
    )
    key: Mapped[str] = mapped_column(String(255))
    value: Mapped[str] = mapped_column(Text, default="")
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationship
    environment: Mapped["Environment"] = relationship(
        "Environment",
        back_populates="variables"
    )
