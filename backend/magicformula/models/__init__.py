# Base
from magicformula.models.base import TimestampMixin, IdMixin

# Ledger
from magicformula.models.holding import Holding
from magicformula.models.transaction import Transaction

# Scheduling
from magicformula.models.cycle_run import CycleRun

__all__ = [
    "TimestampMixin",
    "IdMixin",
    "Holding",
    "Transaction",
    "CycleRun",
]
