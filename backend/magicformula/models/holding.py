from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String
from magicformula.core.database import Base
from magicformula.models.base import IdMixin, TimestampMixin

class Holding(Base, IdMixin, TimestampMixin):
    """
    Acquisition lots, one row per confirmed buy order.

    Rows are never deleted; status only moves active -> sold.
    """
    __tablename__ = "holdings"
    __table_args__ = (
        CheckConstraint("status IN ('active', 'sold')", name="ck_holdings_status"),
        CheckConstraint("quantity > 0", name="ck_holdings_quantity_positive"),
        Index("ix_holdings_symbol_status_date", "symbol", "status", "acquisition_date"),
    )

    symbol = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    acquisition_date = Column(DateTime, nullable=False)
    acquisition_price = Column(Numeric(14, 4), nullable=True)
    status = Column(String(10), nullable=False, default="active")
    broker_order_id = Column(String(100), unique=True, nullable=True)
