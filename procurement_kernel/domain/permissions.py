"""
Transition permissions (``procurement_kernel.domain.permissions``).

Which roles may move an order into which status outside the approval
workflow.  A grant of ``"*"`` covers every status.  Actors whose id
starts with ``system:`` (escalation, integration, operator tooling) are
not role-checked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from procurement_kernel.domain.order_status import OrderStatus

WILDCARD = "*"
SYSTEM_ACTOR_PREFIX = "system:"


def is_system_actor(actor_id: str) -> bool:
    return actor_id.startswith(SYSTEM_ACTOR_PREFIX)


@dataclass(frozen=True)
class TransitionPermissions:
    """Role -> statuses the role may transition an order into.

    Not enforced unless built from a configured table.
    """

    grants: tuple[tuple[str, frozenset[str]], ...] = ()
    enforced: bool = False

    @classmethod
    def from_mapping(
        cls,
        grants: Mapping[str, Iterable[str]],
        enforced: bool = True,
    ) -> TransitionPermissions:
        return cls(
            grants=tuple(
                (role, frozenset(statuses or ())) for role, statuses in sorted(grants.items())
            ),
            enforced=enforced,
        )

    def allowed_for(self, role: str | None) -> frozenset[str]:
        for candidate, statuses in self.grants:
            if candidate == role:
                return statuses
        return frozenset()

    def allows(self, actor_id: str, role: str | None, target: OrderStatus) -> bool:
        if not self.enforced or is_system_actor(actor_id):
            return True
        allowed = self.allowed_for(role)
        return WILDCARD in allowed or target.value in allowed
