from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.sql import func
from app.db.base import Base


class CreditTransaction(Base):
    """
    Credit ledger entry.

    Records every mutation of a user's available credits. source_id holds the
    payment reference for top-ups and is unique so a purchase credits once.
    """
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    transaction_type = Column(String(50), nullable=False)  # topup | subscription_reset | debit
    credits = Column(Integer, nullable=False)  # positive for additions, negative for deductions
    balance_before = Column(Integer, nullable=True)
    balance_after = Column(Integer, nullable=True)
    source_id = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_credit_transactions_user_created", "user_id", "created_at"),
    )
