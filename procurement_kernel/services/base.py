"""
BaseStore -- abstract base for all session-bound kernel stores.

Responsibility:
    Provides the common constructor and session-handling contract for
    every store in the kernel layer.  Stores receive a SQLAlchemy
    ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: stores flush within the caller's unit of
      work and never commit or rollback themselves.  ``unit_of_work``
      owns commit/rollback.
    - Compare-and-swap writes: mutations of versioned rows go through
      ``UPDATE ... WHERE version = :expected`` and check the row count.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseStore(ABC):
    """
    Abstract base class for session-bound stores.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        self.session = session
