"""CredentialRecord model for per-user metered provider keys."""

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String
from sqlalchemy.sql import func

from database import Base


CREDIT_COLUMN_TYPE = Numeric(precision=12, scale=6)


class CredentialRecord(Base):
    """One active provider key and its credit ledger per subscribed user."""

    __tablename__ = "credentials"
    __table_args__ = (
        CheckConstraint(
            "remaining_credits <= total_credits",
            name="ck_credentials_remaining_within_total",
        ),
    )

    user_id = Column(String, primary_key=True)
    display_name = Column(String, nullable=True)
    contact = Column(String, nullable=True)
    provider_key = Column(String, nullable=False)
    provider_key_id = Column(String, nullable=False, index=True)
    total_credits = Column(CREDIT_COLUMN_TYPE, nullable=False)
    remaining_credits = Column(CREDIT_COLUMN_TYPE, nullable=False)
    daily_usage_cap = Column(CREDIT_COLUMN_TYPE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
