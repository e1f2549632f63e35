"""
Module: procurement_kernel.models.sequence
Responsibility: Named counter rows backing ``SequenceService``.

Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per sequence name (UNIQUE(name)).
    - ``current_value`` only ever increases.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class SequenceCounterModel(Base):
    """Current value of one named sequence."""

    __tablename__ = "sequence_counters"

    # e.g. "audit_entry", "integration_event"
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
