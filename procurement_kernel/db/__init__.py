"""Database infrastructure: declarative base and engine/session management."""

from procurement_kernel.db.base import Base, UTCDateTime, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
