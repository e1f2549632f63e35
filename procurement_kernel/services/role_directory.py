"""StaticRoleDirectory -- in-memory ``RoleDirectory`` for embedding and tests."""

from __future__ import annotations

import threading
from typing import Mapping


class StaticRoleDirectory:
    """Maps user ids to a single role."""

    def __init__(self, roles: Mapping[str, str] | None = None):
        self._roles = dict(roles or {})
        self._lock = threading.Lock()

    def role_of(self, user_id: str) -> str | None:
        with self._lock:
            return self._roles.get(user_id)

    def assign(self, user_id: str, role: str) -> None:
        with self._lock:
            self._roles[user_id] = role

    def users_with_role(self, role: str) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(u for u, r in self._roles.items() if r == role))
