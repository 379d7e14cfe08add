from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
    Index,
    JSON,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()

PLAN_FREE = "free"
PLAN_PRO = "pro"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    # Only the upgrade applier writes this column; it moves free -> pro and never back.
    plan = Column(String(16), nullable=False, server_default=PLAN_FREE, default=PLAN_FREE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    applied_grants = relationship(
        "AppliedGrant", back_populates="user", cascade="all, delete-orphan", order_by="AppliedGrant.id"
    )


class AppliedGrant(Base):
    __tablename__ = "applied_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "grant_id", name="uq_applied_grants_user_grant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    grant_id = Column(String(128), nullable=False)
    code = Column(String(64), nullable=False)
    applied_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="applied_grants")


class Audit(Base):
    __tablename__ = "audit"
    __table_args__ = (
        Index("ix_audit_ts", "ts"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(Integer, nullable=False)
    action = Column(String(64), nullable=False)
    meta = Column(JSON, nullable=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
