"""
Voucher -- Pure domain DTOs for the polymorphic transaction record.

Responsibility:
    Defines the immutable value objects that flow between the store, the
    pure engines and the workflow orchestrator: the Voucher itself, its
    approver and workflow-history entries, and the tagged axis payload
    (BillingDetails | CollectionDetails | LiquidationDetails | None) keyed
    by transaction type.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``from_model``
    converters live on the store (services/voucher_store.py), never here.

Invariants enforced:
    - Amounts are non-negative Decimals; a billing's remaining balance is
      between zero and its amount.
    - The payload variant always matches ``transaction_type``; illegal
      combinations (linked billings on an expense, a liquidation parent on
      a billing) are rejected at construction by ``build_payload``.
    - History and approver sequences are tuples; engines produce new
      vouchers via ``dataclasses.replace``, never by mutation.

Failure modes:
    - ValidationError from ``build_payload`` / ``validate_amount`` /
      ``normalize_status``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any, Union
from uuid import UUID

from ledger_kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from ledger_kernel.models.voucher import VoucherModel


class TransactionType(str, Enum):
    """The kinds of financial event a voucher can record."""

    EXPENSE = "expense"
    BUDGET_REQUEST = "budget_request"
    CASH_ADVANCE = "cash_advance"
    COLLECTION = "collection"
    BILLING = "billing"
    ADJUSTMENT = "adjustment"
    REIMBURSEMENT = "reimbursement"


class VoucherStatus(str, Enum):
    """Approval-axis status."""

    DRAFT = "Draft"
    PENDING = "Pending"
    POSTED = "Posted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class BillingStatus(str, Enum):
    """Billing-axis status (payment progress on a billing voucher)."""

    UNBILLED = "unbilled"
    BILLED = "billed"
    PARTIAL = "partial"
    PAID = "paid"


class LiquidationStatus(str, Enum):
    """Derived progress of a budget request or cash advance liquidation."""

    NO = "No"
    PENDING = "Pending"
    YES = "Yes"


TERMINAL_STATUSES = frozenset(
    {VoucherStatus.POSTED, VoucherStatus.REJECTED, VoucherStatus.CANCELLED}
)

# Types that may point at a budget request or cash advance: the expenses
# spent against it and the voucher that settles the difference.
PARENT_LINKED_TYPES = frozenset(
    {TransactionType.EXPENSE, TransactionType.COLLECTION, TransactionType.REIMBURSEMENT}
)

# Status labels the back-office screens used before the approval axis was
# collapsed to five states.
_STATUS_ALIASES: dict[str, VoucherStatus] = {
    "draft": VoucherStatus.DRAFT,
    "pending": VoucherStatus.PENDING,
    "submitted": VoucherStatus.PENDING,
    "under review": VoucherStatus.PENDING,
    "posted": VoucherStatus.POSTED,
    "approved": VoucherStatus.POSTED,
    "processing": VoucherStatus.POSTED,
    "disbursed": VoucherStatus.POSTED,
    "recorded": VoucherStatus.POSTED,
    "audited": VoucherStatus.POSTED,
    "rejected": VoucherStatus.REJECTED,
    "cancelled": VoucherStatus.CANCELLED,
    "canceled": VoucherStatus.CANCELLED,
}


def normalize_status(value: str | VoucherStatus) -> VoucherStatus:
    """Map a canonical or legacy status label onto VoucherStatus.

    Raises:
        ValidationError: Label is not a known status or alias.
    """
    if isinstance(value, VoucherStatus):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"Unknown voucher status: {value!r}", field="status")
    status = _STATUS_ALIASES.get(value.strip().lower())
    if status is None:
        raise ValidationError(f"Unknown voucher status: {value!r}", field="status")
    return status


def parse_transaction_type(value: str | TransactionType) -> TransactionType:
    """Coerce a string onto TransactionType, raising ValidationError."""
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown transaction type: {value!r}", field="transaction_type"
        ) from None


def validate_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce to Decimal and require a finite, non-negative value."""
    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a decimal number", field=field_name) from None
    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be finite", field=field_name)
    if amount < 0:
        raise ValidationError(f"{field_name} must be non-negative", field=field_name)
    return amount


# ---------------------------------------------------------------------------
# Parties and history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Actor:
    """A pre-resolved caller.  Authentication happens outside the engine."""

    id: str
    name: str
    role: str


@dataclass(frozen=True)
class Approver:
    """One signature on a voucher's approval chain."""

    id: str
    name: str
    role: str
    approved_at: datetime
    remarks: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "approved_at": self.approved_at.isoformat(),
            "remarks": self.remarks,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Approver:
        return cls(
            id=data["id"],
            name=data["name"],
            role=data["role"],
            approved_at=datetime.fromisoformat(data["approved_at"]),
            remarks=data.get("remarks"),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only workflow history record.

    ``from_status`` may equal ``status`` (intermediate sequential approvals).
    """

    timestamp: datetime
    from_status: VoucherStatus
    status: VoucherStatus
    actor_id: str
    actor_name: str
    actor_role: str
    action: str
    remarks: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "from_status": self.from_status.value,
            "status": self.status.value,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
            "action": self.action,
            "remarks": self.remarks,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            from_status=VoucherStatus(data["from_status"]),
            status=VoucherStatus(data["status"]),
            actor_id=data["actor_id"],
            actor_name=data["actor_name"],
            actor_role=data["actor_role"],
            action=data["action"],
            remarks=data.get("remarks"),
        )


@dataclass(frozen=True)
class LineItem:
    particular: str
    amount: Decimal
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "particular": self.particular,
            "description": self.description,
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            particular=data["particular"],
            amount=Decimal(str(data["amount"])),
            description=data.get("description"),
        )


# ---------------------------------------------------------------------------
# Axis payload (tagged variant keyed by transaction_type)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingDetails:
    """Billing axis: statement membership and payment progress."""

    billing_status: BillingStatus
    remaining_balance: Decimal
    statement_reference: str | None = None


@dataclass(frozen=True)
class LinkedBilling:
    """One entry of a collection's allocation list."""

    billing_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class CollectionDetails:
    """Collection axis: the ordered billings this collection pays.

    A return of unspent funds carries no billings and points at the
    liquidated parent instead.
    """

    linked_billings: tuple[LinkedBilling, ...]
    allocated_at: datetime | None = None
    parent_voucher_id: UUID | None = None


@dataclass(frozen=True)
class LiquidationDetails:
    """Liquidation axis: the budget request/advance spent against or reimbursed."""

    parent_voucher_id: UUID


VoucherPayload = Union[BillingDetails, CollectionDetails, LiquidationDetails, None]


def _coerce_linked_billings(entries: Any) -> tuple[LinkedBilling, ...]:
    result = []
    for index, entry in enumerate(entries):
        if isinstance(entry, LinkedBilling):
            billing_id, amount = entry.billing_id, entry.amount
        elif isinstance(entry, dict):
            billing_id, amount = entry.get("billing_id"), entry.get("amount")
        else:
            billing_id, amount = entry
        if billing_id is None:
            raise ValidationError(
                f"linked_billings[{index}] has no billing_id", field="linked_billings"
            )
        try:
            billing_uuid = billing_id if isinstance(billing_id, UUID) else UUID(str(billing_id))
        except ValueError:
            raise ValidationError(
                f"linked_billings[{index}] billing_id is not a UUID: {billing_id!r}",
                field="linked_billings",
            ) from None
        value = validate_amount(amount, "linked_billings.amount")
        if value <= 0:
            raise ValidationError(
                f"linked_billings[{index}] amount must be positive",
                field="linked_billings",
            )
        result.append(LinkedBilling(billing_id=billing_uuid, amount=value))
    return tuple(result)


def _coerce_parent_id(parent_voucher_id: UUID | str) -> UUID:
    try:
        return (
            parent_voucher_id
            if isinstance(parent_voucher_id, UUID)
            else UUID(str(parent_voucher_id))
        )
    except ValueError:
        raise ValidationError(
            f"parent_voucher_id is not a UUID: {parent_voucher_id!r}",
            field="parent_voucher_id",
        ) from None


def build_payload(
    transaction_type: TransactionType,
    amount: Decimal,
    linked_billings: Any = None,
    parent_voucher_id: UUID | str | None = None,
) -> VoucherPayload:
    """Build the axis payload for a new voucher.

    A new billing starts unbilled with ``remaining_balance = amount``.
    A collection either pays billings or returns the unspent funds of a
    parent, never both.

    Raises:
        ValidationError: Field not legal for this transaction type.
    """
    if linked_billings is not None and transaction_type != TransactionType.COLLECTION:
        raise ValidationError(
            f"linked_billings is only valid on collection vouchers, not {transaction_type.value}",
            field="linked_billings",
        )
    if parent_voucher_id is not None and transaction_type not in PARENT_LINKED_TYPES:
        raise ValidationError(
            "parent_voucher_id is only valid on expense, collection and reimbursement "
            f"vouchers, not {transaction_type.value}",
            field="parent_voucher_id",
        )
    parent = _coerce_parent_id(parent_voucher_id) if parent_voucher_id is not None else None

    if transaction_type == TransactionType.BILLING:
        return BillingDetails(
            billing_status=BillingStatus.UNBILLED,
            remaining_balance=amount,
        )
    if transaction_type == TransactionType.COLLECTION:
        if parent is not None and linked_billings:
            raise ValidationError(
                "A return of funds cannot also pay billings", field="linked_billings"
            )
        return CollectionDetails(
            linked_billings=_coerce_linked_billings(linked_billings or ()),
            parent_voucher_id=parent,
        )
    if parent is not None:
        return LiquidationDetails(parent_voucher_id=parent)
    return None


# ---------------------------------------------------------------------------
# Voucher
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Voucher:
    """Immutable snapshot of one voucher row."""

    id: UUID
    voucher_number: str
    transaction_type: TransactionType
    source_module: str
    amount: Decimal
    currency: str
    purpose: str
    requestor_id: str
    requestor_name: str
    status: VoucherStatus = VoucherStatus.DRAFT
    description: str | None = None
    vendor_name: str | None = None
    customer_id: str | None = None
    customer_name: str | None = None
    project_number: str | None = None
    expense_category: str | None = None
    sub_category: str | None = None
    payment_method: str | None = None
    credit_terms: str | None = None
    due_date: date | None = None
    notes: str | None = None
    line_items: tuple[LineItem, ...] = ()
    approvers: tuple[Approver, ...] = ()
    workflow_history: tuple[HistoryEntry, ...] = ()
    payload: VoucherPayload = None
    posted_to_ledger: bool = False
    ledger_entry_id: UUID | None = None
    posted_at: datetime | None = None
    posted_by_id: str | None = None
    created_at: datetime | None = None
    version: int = field(default=1, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def billing(self) -> BillingDetails | None:
        return self.payload if isinstance(self.payload, BillingDetails) else None

    @property
    def collection(self) -> CollectionDetails | None:
        return self.payload if isinstance(self.payload, CollectionDetails) else None

    @property
    def parent_voucher_id(self) -> UUID | None:
        if isinstance(self.payload, (LiquidationDetails, CollectionDetails)):
            return self.payload.parent_voucher_id
        return None

    @property
    def statement_reference(self) -> str | None:
        billing = self.billing
        return billing.statement_reference if billing else None

    def has_approved(self, actor_id: str) -> bool:
        return any(a.id == actor_id for a in self.approvers)

    @classmethod
    def from_model(cls, model: VoucherModel) -> Voucher:
        """Boundary converter; only invoked from services and selectors."""
        transaction_type = TransactionType(model.transaction_type)
        payload: VoucherPayload = None
        if transaction_type == TransactionType.BILLING:
            payload = BillingDetails(
                billing_status=BillingStatus(model.billing_status),
                remaining_balance=model.remaining_balance,
                statement_reference=model.statement_reference,
            )
        elif transaction_type == TransactionType.COLLECTION:
            payload = CollectionDetails(
                linked_billings=tuple(
                    LinkedBilling(
                        billing_id=UUID(entry["billing_id"]),
                        amount=Decimal(str(entry["amount"])),
                    )
                    for entry in (model.linked_billings or ())
                ),
                allocated_at=_aware(model.allocated_at),
                parent_voucher_id=model.parent_voucher_id,
            )
        elif model.parent_voucher_id is not None:
            payload = LiquidationDetails(parent_voucher_id=model.parent_voucher_id)

        return cls(
            id=model.id,
            voucher_number=model.voucher_number,
            transaction_type=transaction_type,
            source_module=model.source_module,
            amount=model.amount,
            currency=model.currency,
            purpose=model.purpose,
            requestor_id=model.requestor_id,
            requestor_name=model.requestor_name,
            status=VoucherStatus(model.status),
            description=model.description,
            vendor_name=model.vendor_name,
            customer_id=model.customer_id,
            customer_name=model.customer_name,
            project_number=model.project_number,
            expense_category=model.expense_category,
            sub_category=model.sub_category,
            payment_method=model.payment_method,
            credit_terms=model.credit_terms,
            due_date=model.due_date,
            notes=model.notes,
            line_items=tuple(LineItem.from_dict(i) for i in (model.line_items or ())),
            approvers=tuple(Approver.from_dict(a) for a in (model.approvers or ())),
            workflow_history=tuple(
                HistoryEntry.from_dict(h) for h in (model.workflow_history or ())
            ),
            payload=payload,
            posted_to_ledger=bool(model.posted_to_ledger),
            ledger_entry_id=model.ledger_entry_id,
            posted_at=_aware(model.posted_at),
            posted_by_id=model.posted_by_id,
            created_at=_aware(model.created_at),
            version=model.version,
        )


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on DateTime(timezone=True); stored values are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
