"""
Approval authority -- injected capability for role-gated transitions.

Responsibility:
    Answers "may this actor approve vouchers of this category?" and "may
    this actor cancel someone else's voucher?".  The workflow never inspects
    role names itself; it asks an ApprovalAuthority.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  The default implementation is built
    from ``ledger_config`` by the orchestrator.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from ledger_kernel.domain.voucher import Actor, TransactionType

WILDCARD = "*"


@runtime_checkable
class ApprovalAuthority(Protocol):
    """Capability interface consumed by the approval engine."""

    def can_approve(self, actor: Actor, category: TransactionType) -> bool: ...

    def is_administrative(self, actor: Actor) -> bool: ...


class RoleApprovalAuthority:
    """Role table: role -> transaction types the role may approve.

    A ``"*"`` entry grants every type.  Role comparison is case-insensitive.
    """

    def __init__(
        self,
        approval_authority: Mapping[str, Iterable[str]],
        administrative_roles: Iterable[str] = (),
    ):
        table: dict[str, frozenset[str]] = {}
        for role, categories in approval_authority.items():
            if isinstance(categories, str):
                categories = (categories,)
            table[role.strip().lower()] = frozenset(
                c.value if isinstance(c, TransactionType) else str(c) for c in categories
            )
        self._table = table
        self._admin_roles = frozenset(r.strip().lower() for r in administrative_roles)

    def can_approve(self, actor: Actor, category: TransactionType) -> bool:
        granted = self._table.get((actor.role or "").strip().lower())
        if not granted:
            return False
        return WILDCARD in granted or TransactionType(category).value in granted

    def is_administrative(self, actor: Actor) -> bool:
        return (actor.role or "").strip().lower() in self._admin_roles

    def __repr__(self) -> str:
        return f"RoleApprovalAuthority(roles={sorted(self._table)})"
