from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String
from magicformula.core.database import Base
from magicformula.models.base import IdMixin, TimestampMixin

class Transaction(Base, IdMixin, TimestampMixin):
    """
    Order confirmations. Immutable once written.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("action IN ('buy', 'sell')", name="ck_transactions_action"),
    )

    symbol = Column(String(20), nullable=False, index=True)
    action = Column(String(4), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(14, 4), nullable=False)
    total_amount = Column(Numeric(18, 4), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    # One transaction per confirmation; retried ledger writes hit this constraint
    broker_order_id = Column(String(100), unique=True, nullable=True)
