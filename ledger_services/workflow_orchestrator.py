"""
ledger_services.workflow_orchestrator -- Voucher unit-of-work coordinator.

Responsibility:
    The Python API of the ledger.  Each public method is one unit of work:
    allocate identifiers, open a session, read snapshots through the store,
    ask a pure engine what to write, write it through the store/poster, and
    commit.  Any exception rolls the whole unit back and propagates unchanged.

Architecture position:
    Services layer.  May import from ledger_engines/ (pure engines),
    ledger_kernel/ (domain, services, selectors) and ledger_config/.

Invariants enforced:
    - Thin coordinator: no transition, eligibility or balance rules here;
      those live in ledger_engines.
    - All-or-nothing: statement claims, collection allocations and
      finalization commit every write or none.
    - Identifiers come from the numbering service BEFORE the unit of work
      opens, in their own committed transaction (never reused, gaps allowed).
    - StaleDataError at flush/commit becomes ConcurrentModificationError.

Usage:
    workflow = VoucherWorkflow(get_session_factory())
    voucher = workflow.create_voucher("expense", "operations", requestor,
                                      Decimal("1500.00"), "PHP", "Fuel")
    workflow.submit(voucher.id, requestor)
    workflow.approve(voucher.id, approver)
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ledger_config import EngineConfig, get_active_config
from ledger_config.bridges import build_approval_authority, build_numbering_service
from ledger_engines.approval import apply_transition
from ledger_engines.liquidation import (
    ExpenseEntry,
    LiquidationSummary,
    plan_liquidation,
    plan_settlement,
    summarize,
    validate_parent,
    LIQUIDATION_PARENT_TYPES,
)
from ledger_engines.reconciliation import (
    billing_status_after,
    check_collection,
    plan_allocation,
    plan_finalize,
    plan_statement,
    require_billing_authority,
    validate_statement_ids,
)
from ledger_kernel.domain.authority import ApprovalAuthority
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.currency import CurrencyRegistry
from ledger_kernel.domain.ledger import LedgerPosting, Statement
from ledger_kernel.domain.voucher import (
    Actor,
    BillingDetails,
    LineItem,
    TransactionType,
    Voucher,
    VoucherStatus,
    build_payload,
    parse_transaction_type,
    validate_amount,
)
from ledger_kernel.domain.workflow import (
    APPROVE,
    AUTO_APPROVE,
    CANCEL,
    REJECT,
    SUBMIT,
)
from ledger_kernel.exceptions import (
    AlreadyPostedError,
    ConcurrentModificationError,
    InvalidParentError,
    InvalidTransitionError,
    TypeMismatchError,
    UnauthorizedError,
    ValidationError,
    VoucherNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger_posting import LedgerSourceType
from ledger_kernel.selectors.voucher_selector import VoucherSelector
from ledger_kernel.services.ledger_poster import LedgerPoster
from ledger_kernel.services.sequence_service import STATEMENT_KIND, NumberingService
from ledger_kernel.services.voucher_store import VoucherStore

logger = get_logger("services.workflow")

# Free-form fields a caller may set at creation and edit while Draft.
DESCRIPTIVE_FIELDS = frozenset(
    {
        "description",
        "vendor_name",
        "customer_id",
        "customer_name",
        "project_number",
        "expense_category",
        "sub_category",
        "payment_method",
        "credit_terms",
        "due_date",
        "notes",
        "line_items",
    }
)
PAYLOAD_FIELDS = frozenset({"linked_billings", "parent_voucher_id"})
EDITABLE_FIELDS = DESCRIPTIVE_FIELDS | {"amount", "purpose"}

# Auto-approved vouchers of these types are posted to the ledger at once.
AUTO_POSTED_TYPES = frozenset({TransactionType.EXPENSE, TransactionType.REIMBURSEMENT})


@dataclass(frozen=True)
class AutoApproveResult:
    voucher: Voucher
    posted_expense_id: UUID | None = None


@dataclass(frozen=True)
class StatementResult:
    statement_reference: str
    members: tuple[Voucher, ...]


@dataclass(frozen=True)
class FinalizeResult:
    posted: bool
    statement_reference: str
    ledger_entry_id: UUID
    members: tuple[Voucher, ...]


def as_actor(actor: Actor | Mapping[str, Any]) -> Actor:
    """Accept an Actor or a ``{id, name, role}`` mapping."""
    if isinstance(actor, Actor):
        return actor
    try:
        return Actor(id=str(actor["id"]), name=str(actor["name"]), role=str(actor["role"]))
    except (KeyError, TypeError):
        raise ValidationError("actor must provide id, name and role", field="actor") from None


def _coerce_descriptive(fields: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(fields)
    if "due_date" in values and isinstance(values["due_date"], str):
        try:
            values["due_date"] = date.fromisoformat(values["due_date"])
        except ValueError:
            raise ValidationError(
                f"due_date is not an ISO date: {values['due_date']!r}", field="due_date"
            ) from None
    if "line_items" in values:
        items = []
        for raw in values["line_items"] or ():
            if isinstance(raw, LineItem):
                item = raw
            else:
                item = LineItem(
                    particular=raw.get("particular") or "",
                    amount=raw.get("amount", "0"),
                    description=raw.get("description"),
                )
            items.append(replace(item, amount=validate_amount(item.amount, "line_items.amount")))
        values["line_items"] = tuple(items)
    return values


def _split_fields(fields: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    unknown = set(fields) - DESCRIPTIVE_FIELDS - PAYLOAD_FIELDS
    if unknown:
        raise ValidationError(f"Unknown voucher field(s): {sorted(unknown)}", field=sorted(unknown)[0])
    descriptive = _coerce_descriptive({k: v for k, v in fields.items() if k in DESCRIPTIVE_FIELDS})
    payload = {k: v for k, v in fields.items() if k in PAYLOAD_FIELDS}
    return descriptive, payload


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value


class VoucherWorkflow:
    """
    Unit-of-work coordinator for every voucher operation.

    Contract:
        Every public method either fully applies or applies nothing, and
        returns frozen DTOs (never ORM rows).

    Non-goals:
        - No retries (see ledger_services.retry.retry_on_conflict).
        - No authentication: actors arrive pre-resolved.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        authority: ApprovalAuthority | None = None,
        numbering: NumberingService | None = None,
    ):
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._authority = authority or build_approval_authority(self._config)
        self._numbering = numbering or build_numbering_service(self._config, session_factory)

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def _unit_of_work(self, operation: str, entity_id: Any = None) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            logger.warning(
                "concurrent_modification_detected",
                extra={"operation": operation, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(operation, str(entity_id)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def query(self) -> Iterator[VoucherSelector]:
        """Read-only access for callers; the session is discarded afterwards."""
        session = self._session_factory()
        try:
            yield VoucherSelector(session)
        finally:
            session.rollback()
            session.close()

    def _new_voucher(
        self,
        transaction_type: TransactionType,
        source_module: str,
        requestor: Actor,
        amount: Decimal,
        currency: str,
        purpose: str,
        voucher_number: str,
        descriptive: Mapping[str, Any],
        payload_fields: Mapping[str, Any],
        now: datetime,
    ) -> Voucher:
        return Voucher(
            id=uuid4(),
            voucher_number=voucher_number,
            transaction_type=transaction_type,
            source_module=source_module,
            amount=amount,
            currency=currency,
            purpose=purpose,
            requestor_id=requestor.id,
            requestor_name=requestor.name,
            status=VoucherStatus.DRAFT,
            payload=build_payload(
                transaction_type,
                amount,
                linked_billings=payload_fields.get("linked_billings"),
                parent_voucher_id=payload_fields.get("parent_voucher_id"),
            ),
            created_at=now,
            **descriptive,
        )

    def _prepare_create(
        self,
        transaction_type: TransactionType | str,
        source_module: str,
        amount: Any,
        currency: str | None,
        purpose: str,
        fields: Mapping[str, Any],
    ) -> tuple[TransactionType, Decimal, str, dict[str, Any], dict[str, Any]]:
        transaction_type = parse_transaction_type(transaction_type)
        _require_text(source_module, "source_module")
        _require_text(purpose, "purpose")
        amount = validate_amount(amount)
        currency = CurrencyRegistry.validate(currency or self._config.default_currency)
        descriptive, payload_fields = _split_fields(fields)
        # Surface payload errors before a number is burned.
        build_payload(
            transaction_type,
            amount,
            linked_billings=payload_fields.get("linked_billings"),
            parent_voucher_id=payload_fields.get("parent_voucher_id"),
        )
        return transaction_type, amount, currency, descriptive, payload_fields

    def _check_liquidation_parent(self, store: VoucherStore, parent_id: Any, currency: str) -> None:
        parent = validate_parent(store.find(parent_id), parent_id)
        if parent.currency != currency:
            raise ValidationError(
                f"Voucher currency {currency} does not match parent currency {parent.currency}",
                field="currency",
            )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_voucher(
        self,
        transaction_type: TransactionType | str,
        source_module: str,
        requestor: Actor | Mapping[str, Any],
        amount: Any,
        currency: str | None = None,
        purpose: str = "",
        **fields: Any,
    ) -> Voucher:
        """
        Create a Draft voucher.

        ``fields`` may carry the descriptive fields, ``linked_billings``
        (collections) and ``parent_voucher_id`` (liquidating expenses and the
        collection or reimbursement settling them).

        Raises:
            ValidationError / InvalidCurrencyError: Malformed input or a field
                illegal for the transaction type.
            InvalidParentError: ``parent_voucher_id`` is not a Posted
                budget request or cash advance.
        """
        requestor = as_actor(requestor)
        transaction_type, amount, currency, descriptive, payload_fields = self._prepare_create(
            transaction_type, source_module, amount, currency, purpose, fields
        )

        parent_id = payload_fields.get("parent_voucher_id")
        if parent_id is not None:
            with self._unit_of_work("create_voucher", parent_id) as session:
                self._check_liquidation_parent(VoucherStore(session), parent_id, currency)

        now = self._clock.now()
        number = self._numbering.next(transaction_type, now.date())

        with LogContext.bind(actor_id=requestor.id):
            with self._unit_of_work("create_voucher", number) as session:
                store = VoucherStore(session)
                if parent_id is not None:
                    self._check_liquidation_parent(store, parent_id, currency)
                voucher = store.add(
                    self._new_voucher(
                        transaction_type,
                        source_module,
                        requestor,
                        amount,
                        currency,
                        purpose,
                        number,
                        descriptive,
                        payload_fields,
                        now,
                    )
                )

            logger.info(
                "voucher_created",
                extra={
                    "voucher_id": str(voucher.id),
                    "voucher_number": voucher.voucher_number,
                    "transaction_type": voucher.transaction_type.value,
                    "amount": str(voucher.amount),
                    "currency": voucher.currency,
                },
            )
        return voucher

    # ------------------------------------------------------------------
    # Approval state machine
    # ------------------------------------------------------------------

    def _transition(
        self,
        voucher_id: UUID | str,
        action: str,
        actor: Actor | Mapping[str, Any],
        remarks: str | None = None,
    ) -> Voucher:
        actor = as_actor(actor)
        with LogContext.bind(actor_id=actor.id, voucher_id=voucher_id):
            with self._unit_of_work(action, voucher_id) as session:
                store = VoucherStore(session)
                voucher = store.get(voucher_id)
                chain = self._config.chain_for(voucher.transaction_type) if action == APPROVE else ()
                outcome = apply_transition(
                    voucher,
                    action=action,
                    actor=actor,
                    authority=self._authority,
                    chain=chain,
                    now=self._clock.now(),
                    remarks=remarks,
                )
                saved = store.save(outcome.voucher)

            with LogContext.for_voucher(saved):
                logger.info(
                    "voucher_transition",
                    extra={
                        "action": action,
                        "from_status": outcome.history_entry.from_status,
                        "to_status": outcome.history_entry.status,
                        "version": saved.version,
                    },
                )
        return saved

    def submit(self, voucher_id: UUID | str, actor: Actor | Mapping[str, Any]) -> Voucher:
        """Draft -> Pending, by the requestor."""
        return self._transition(voucher_id, SUBMIT, actor)

    def approve(
        self,
        voucher_id: UUID | str,
        actor: Actor | Mapping[str, Any],
        remarks: str | None = None,
    ) -> Voucher:
        """Pending -> Posted, or one more signature on a sequential chain."""
        return self._transition(voucher_id, APPROVE, actor, remarks)

    def reject(self, voucher_id: UUID | str, actor: Actor | Mapping[str, Any], reason: str) -> Voucher:
        """Pending -> Rejected.  ``reason`` must be non-blank."""
        return self._transition(voucher_id, REJECT, actor, reason)

    def cancel(
        self,
        voucher_id: UUID | str,
        actor: Actor | Mapping[str, Any],
        remarks: str | None = None,
    ) -> Voucher:
        """
        Draft/Pending -> Cancelled, by the requestor or an administrative role.

        Raises:
            InvalidTransitionError: Terminal voucher, or a collection that
                was already applied to its billings.
        """
        return self._transition(voucher_id, CANCEL, actor, remarks)

    def auto_approve(
        self,
        transaction_type: TransactionType | str,
        source_module: str,
        actor: Actor | Mapping[str, Any],
        amount: Any,
        currency: str | None = None,
        purpose: str = "",
        **fields: Any,
    ) -> AutoApproveResult:
        """
        Create and post a voucher in one step (Draft -> Posted, atomically).

        The actor is the requestor and the sole approver.  Expenses and
        reimbursements are also posted to the ledger in the same unit of
        work; the posting id is returned as ``posted_expense_id``.
        """
        actor = as_actor(actor)
        transaction_type, amount, currency, descriptive, payload_fields = self._prepare_create(
            transaction_type, source_module, amount, currency, purpose, fields
        )
        if not self._authority.can_approve(actor, transaction_type):
            raise UnauthorizedError(
                actor.id,
                AUTO_APPROVE,
                f"role '{actor.role}' has no approval authority for "
                f"{transaction_type.value} vouchers",
            )

        parent_id = payload_fields.get("parent_voucher_id")
        if parent_id is not None:
            with self._unit_of_work(AUTO_APPROVE, parent_id) as session:
                self._check_liquidation_parent(VoucherStore(session), parent_id, currency)

        now = self._clock.now()
        number = self._numbering.next(transaction_type, now.date())

        with LogContext.bind(actor_id=actor.id):
            with self._unit_of_work(AUTO_APPROVE, number) as session:
                store = VoucherStore(session)
                if parent_id is not None:
                    self._check_liquidation_parent(store, parent_id, currency)
                draft = self._new_voucher(
                    transaction_type,
                    source_module,
                    actor,
                    amount,
                    currency,
                    purpose,
                    number,
                    descriptive,
                    payload_fields,
                    now,
                )
                outcome = apply_transition(
                    draft,
                    action=AUTO_APPROVE,
                    actor=actor,
                    authority=self._authority,
                    now=now,
                )
                posted = outcome.voucher
                posting_id = None
                if transaction_type in AUTO_POSTED_TYPES:
                    posting = LedgerPoster(session).post(
                        LedgerSourceType.VOUCHER,
                        posted.voucher_number,
                        posted.amount,
                        posted.currency,
                        actor.id,
                        now,
                    )
                    posting_id = posting.id
                    posted = replace(
                        posted,
                        posted_to_ledger=True,
                        ledger_entry_id=posting.id,
                        posted_at=now,
                        posted_by_id=actor.id,
                    )
                voucher = store.add(posted)

            logger.info(
                "voucher_auto_approved",
                extra={
                    "voucher_id": str(voucher.id),
                    "voucher_number": voucher.voucher_number,
                    "transaction_type": voucher.transaction_type.value,
                    "posted_expense_id": str(posting_id) if posting_id else None,
                },
            )
        return AutoApproveResult(voucher=voucher, posted_expense_id=posting_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def generate_statement(
        self,
        voucher_ids: Sequence[UUID | str],
        actor: Actor | Mapping[str, Any],
    ) -> StatementResult:
        """
        Group Draft billings into a new statement of account.

        All members are claimed (Draft -> Pending, billed, referenced) in one
        unit of work, each write conditional on the member's version.

        Raises:
            ValidationError: Empty/duplicate ids or mixed currencies.
            UnauthorizedError: Actor lacks billing authority.
            VoucherNotFoundError: An id does not exist.
            IneligibleItemError: A member is not an unclaimed Draft billing.
            ConcurrentModificationError: A member was claimed concurrently.
        """
        actor = as_actor(actor)
        voucher_ids = list(voucher_ids)
        validate_statement_ids(voucher_ids)
        require_billing_authority(actor, self._authority, "generate_statement")

        now = self._clock.now()
        reference = self._numbering.next(STATEMENT_KIND, now.date())

        with LogContext.bind(actor_id=actor.id, statement_reference=reference):
            with self._unit_of_work("generate_statement", reference) as session:
                store = VoucherStore(session)
                members = store.get_many(voucher_ids)
                plan = plan_statement(
                    members,
                    statement_reference=reference,
                    actor=actor,
                    authority=self._authority,
                    now=now,
                )
                saved = tuple(store.save(member) for member in plan.members)
                store.add_statement(
                    statement_reference=reference,
                    member_count=len(saved),
                    total_amount=plan.total_amount,
                    currency=plan.currency,
                    created_by_id=actor.id,
                    created_at=now,
                )

            logger.info(
                "statement_generated",
                extra={
                    "member_count": len(saved),
                    "total_amount": str(plan.total_amount),
                    "currency": plan.currency,
                },
            )
        return StatementResult(statement_reference=reference, members=saved)

    def allocate_collection(
        self,
        collection_voucher_id: UUID | str,
        actor: Actor | Mapping[str, Any],
    ) -> Voucher:
        """
        Apply a collection's linked billings against their remaining balances.

        Raises:
            UnauthorizedError: Actor lacks authority over collections.
            TypeMismatchError / InvalidTransitionError / AlreadyAllocatedError /
            ValidationError: The collection cannot be applied.
            VoucherNotFoundError / IneligibleItemError / OverAllocationError:
                A linked billing cannot take its entry.
        """
        actor = as_actor(actor)
        if not self._authority.can_approve(actor, TransactionType.COLLECTION):
            raise UnauthorizedError(
                actor.id, "allocate", f"role '{actor.role}' has no authority over collections"
            )

        with LogContext.bind(actor_id=actor.id, voucher_id=collection_voucher_id):
            with self._unit_of_work("allocate_collection", collection_voucher_id) as session:
                store = VoucherStore(session)
                collection = store.get(collection_voucher_id)
                check_collection(collection)

                billings: dict[UUID, Voucher] = {}
                for entry in collection.collection.linked_billings:
                    if entry.billing_id not in billings:
                        found = store.find(entry.billing_id)
                        if found is not None:
                            billings[entry.billing_id] = found

                now = self._clock.now()
                plan = plan_allocation(
                    collection,
                    billings,
                    now=now,
                    tolerance=self._config.reconciliation.paid_tolerance,
                )
                for billing in plan.billings:
                    store.save(billing)
                for line in plan.lines:
                    store.add_allocation(
                        collection_id=collection.id,
                        billing_id=line.billing_id,
                        position=line.position,
                        amount=line.amount,
                        currency=collection.currency,
                        remaining_after=line.remaining_after,
                        allocated_by_id=actor.id,
                        allocated_at=now,
                    )
                saved = store.save(plan.collection)

            logger.info(
                "collection_allocated",
                extra={
                    "voucher_number": saved.voucher_number,
                    "entry_count": len(plan.lines),
                    "total_allocated": str(plan.total_allocated),
                    "billing_ids": [str(b.id) for b in plan.billings],
                },
            )
        return saved

    def finalize_statement(
        self,
        statement_reference: str,
        actor: Actor | Mapping[str, Any],
    ) -> FinalizeResult:
        """
        Post a statement to the ledger, exactly once.

        Raises:
            StatementNotFoundError: Unknown reference.
            AlreadyPostedError: The statement is already posted.
            UnauthorizedError: Actor lacks billing authority.
            IneligibleItemError: Every member is Cancelled or Rejected.
        """
        actor = as_actor(actor)
        with LogContext.bind(actor_id=actor.id, statement_reference=statement_reference):
            with self._unit_of_work("finalize_statement", statement_reference) as session:
                store = VoucherStore(session)
                statement = store.get_statement(statement_reference)
                if statement.is_posted:
                    raise AlreadyPostedError(LedgerSourceType.STATEMENT, statement_reference)

                members = VoucherSelector(session).by_statement_reference(statement_reference)
                now = self._clock.now()
                plan = plan_finalize(
                    members,
                    statement_reference=statement_reference,
                    actor=actor,
                    authority=self._authority,
                    now=now,
                )

                posting = LedgerPoster(session).post(
                    LedgerSourceType.STATEMENT,
                    statement_reference,
                    plan.total_amount,
                    statement.currency,
                    actor.id,
                    now,
                )

                saved = []
                for member in plan.included:
                    if not member.posted_to_ledger:
                        member = replace(
                            member,
                            posted_to_ledger=True,
                            ledger_entry_id=posting.id,
                            posted_at=now,
                            posted_by_id=actor.id,
                        )
                        member = store.save(member)
                    saved.append(member)

                store.mark_statement_posted(statement, actor.id, now, posting.id)

            logger.info(
                "statement_finalized",
                extra={
                    "ledger_entry_id": str(posting.id),
                    "member_count": len(saved),
                    "excluded_count": len(plan.excluded),
                    "total_amount": str(plan.total_amount),
                },
            )
        return FinalizeResult(
            posted=True,
            statement_reference=statement_reference,
            ledger_entry_id=posting.id,
            members=tuple(saved),
        )

    def get_statement(self, statement_reference: str) -> Statement:
        with self._unit_of_work("get_statement", statement_reference) as session:
            return VoucherStore(session).get_statement(statement_reference)

    # ------------------------------------------------------------------
    # Liquidation
    # ------------------------------------------------------------------

    def liquidate(
        self,
        parent_id: UUID | str,
        expense_entries: Sequence[ExpenseEntry | Mapping[str, Any]],
        actor: Actor | Mapping[str, Any],
    ) -> list[Voucher]:
        """
        Create one Draft expense per entry against a Posted budget request
        or cash advance.  The expenses then follow the ordinary lifecycle.

        Raises:
            InvalidParentError: Parent missing, not Posted, or wrong type.
            ValidationError: No entries, bad amount, or currency mismatch.
        """
        actor = as_actor(actor)
        entries = [
            e if isinstance(e, ExpenseEntry) else ExpenseEntry(**dict(e)) for e in expense_entries
        ]

        with self._unit_of_work("liquidate", parent_id) as session:
            parent = validate_parent(VoucherStore(session).find(parent_id), parent_id)
            resolved = plan_liquidation(parent, entries)

        now = self._clock.now()
        numbers = [self._numbering.next(TransactionType.EXPENSE, now.date()) for _ in resolved]

        with LogContext.bind(actor_id=actor.id, voucher_id=parent.id):
            with self._unit_of_work("liquidate", parent_id) as session:
                store = VoucherStore(session)
                validate_parent(store.find(parent.id), parent_id)
                created = []
                for entry, number in zip(resolved, numbers):
                    created.append(
                        store.add(
                            self._new_voucher(
                                TransactionType.EXPENSE,
                                parent.source_module,
                                actor,
                                entry.amount,
                                entry.currency,
                                entry.purpose,
                                number,
                                {
                                    "vendor_name": entry.vendor_name,
                                    "expense_category": entry.expense_category,
                                    "description": entry.description,
                                    "project_number": parent.project_number,
                                },
                                {"parent_voucher_id": parent.id},
                                now,
                            )
                        )
                    )

            logger.info(
                "liquidation_created",
                extra={
                    "parent_voucher_number": parent.voucher_number,
                    "expense_count": len(created),
                    "total_amount": str(sum((v.amount for v in created), Decimal("0"))),
                },
            )
        return created

    def liquidation_summary(self, parent_id: UUID | str) -> LiquidationSummary:
        """
        Derived liquidation totals of a budget request / cash advance.

        Raises:
            VoucherNotFoundError: Unknown parent.
            InvalidParentError: Parent is not a budget request or cash advance.
        """
        with self._unit_of_work("liquidation_summary", parent_id) as session:
            parent = VoucherStore(session).get(parent_id)
            if parent.transaction_type not in LIQUIDATION_PARENT_TYPES:
                raise InvalidParentError(
                    str(parent_id),
                    f"{parent.transaction_type.value} vouchers cannot be liquidated",
                )
            children = VoucherSelector(session).by_parent(parent.id)
            return summarize(parent, children)

    def settle_liquidation(
        self,
        parent_id: UUID | str,
        actor: Actor | Mapping[str, Any],
    ) -> Voucher:
        """
        Create the Draft voucher that closes a liquidation: a collection
        returning unspent funds, or a reimbursement of the overspend.  It is
        linked to the parent and follows the ordinary lifecycle.

        Raises:
            InvalidParentError: Parent missing, not Posted, or wrong type.
            IneligibleItemError: Nothing Posted yet, expenses still open, an
                existing settlement, or a balanced liquidation.
            UnauthorizedError: Actor may not approve the settlement type.
        """
        actor = as_actor(actor)
        with self._unit_of_work("settle_liquidation", parent_id) as session:
            parent = validate_parent(VoucherStore(session).find(parent_id), parent_id)
            plan = plan_settlement(parent, VoucherSelector(session).by_parent(parent.id))
        if not self._authority.can_approve(actor, plan.transaction_type):
            raise UnauthorizedError(
                actor.id,
                "settle_liquidation",
                f"role '{actor.role}' has no approval authority for {plan.transaction_type.value}",
            )

        now = self._clock.now()
        number = self._numbering.next(plan.transaction_type, now.date())

        with LogContext.bind(actor_id=actor.id, voucher_id=parent.id):
            with self._unit_of_work("settle_liquidation", number) as session:
                store = VoucherStore(session)
                parent = validate_parent(store.find(parent.id), parent_id)
                # Expenses or another settlement may have landed since the read.
                plan = plan_settlement(parent, VoucherSelector(session).by_parent(parent.id))
                voucher = store.add(
                    self._new_voucher(
                        plan.transaction_type,
                        parent.source_module,
                        actor,
                        plan.amount,
                        plan.currency,
                        plan.purpose,
                        number,
                        {
                            "expense_category": plan.expense_category,
                            "sub_category": plan.sub_category,
                            "project_number": parent.project_number,
                        },
                        {"parent_voucher_id": parent.id},
                        now,
                    )
                )

            with LogContext.for_voucher(voucher):
                logger.info(
                    "liquidation_settled",
                    extra={
                        "parent_voucher_id": parent.id,
                        "parent_voucher_number": parent.voucher_number,
                        "transaction_type": voucher.transaction_type,
                        "amount": voucher.amount,
                    },
                )
        return voucher

    # ------------------------------------------------------------------
    # Ledger posting of individual vouchers
    # ------------------------------------------------------------------

    def post_to_ledger(
        self,
        voucher_id: UUID | str,
        actor: Actor | Mapping[str, Any],
    ) -> LedgerPosting:
        """
        Post one Posted non-billing voucher to the ledger, exactly once.

        Raises:
            TypeMismatchError: Billings are posted through statements.
            InvalidTransitionError: Voucher is not Posted.
            AlreadyPostedError: Voucher is already on the ledger.
            UnauthorizedError: Actor lacks authority for the voucher's type.
        """
        actor = as_actor(actor)
        with LogContext.bind(actor_id=actor.id, voucher_id=voucher_id):
            with self._unit_of_work("post_to_ledger", voucher_id) as session:
                store = VoucherStore(session)
                voucher = store.get(voucher_id)
                if voucher.transaction_type == TransactionType.BILLING:
                    raise TypeMismatchError(str(voucher.id), "non-billing", voucher.transaction_type.value)
                if voucher.status != VoucherStatus.POSTED:
                    raise InvalidTransitionError(str(voucher.id), voucher.status.value, "post_to_ledger")
                if voucher.posted_to_ledger:
                    raise AlreadyPostedError(LedgerSourceType.VOUCHER, voucher.voucher_number)
                if not self._authority.can_approve(actor, voucher.transaction_type):
                    raise UnauthorizedError(
                        actor.id,
                        "post_to_ledger",
                        f"role '{actor.role}' has no approval authority for "
                        f"{voucher.transaction_type.value} vouchers",
                    )

                now = self._clock.now()
                posting = LedgerPoster(session).post(
                    LedgerSourceType.VOUCHER,
                    voucher.voucher_number,
                    voucher.amount,
                    voucher.currency,
                    actor.id,
                    now,
                )
                store.save(
                    replace(
                        voucher,
                        posted_to_ledger=True,
                        ledger_entry_id=posting.id,
                        posted_at=now,
                        posted_by_id=actor.id,
                    )
                )

            logger.info(
                "voucher_posted_to_ledger",
                extra={
                    "voucher_number": voucher.voucher_number,
                    "ledger_entry_id": str(posting.id),
                },
            )
        return posting

    # ------------------------------------------------------------------
    # Draft editing and reads
    # ------------------------------------------------------------------

    def update_draft(
        self,
        voucher_id: UUID | str,
        actor: Actor | Mapping[str, Any],
        **changes: Any,
    ) -> Voucher:
        """
        Edit descriptive fields or the amount of a Draft voucher (owner only).

        Appends no history entry: no transition takes place.

        Raises:
            ValidationError: No changes, or a field that is not editable,
                or a billing amount below what was already collected.
            InvalidTransitionError: Voucher has left Draft.
            UnauthorizedError: Actor is not the requestor.
        """
        actor = as_actor(actor)
        if not changes:
            raise ValidationError("No changes given")
        illegal = set(changes) - EDITABLE_FIELDS
        if illegal:
            raise ValidationError(
                f"Field(s) cannot be edited: {sorted(illegal)}", field=sorted(illegal)[0]
            )
        values = _coerce_descriptive({k: v for k, v in changes.items() if k in DESCRIPTIVE_FIELDS})
        if "purpose" in changes:
            values["purpose"] = _require_text(changes["purpose"], "purpose")
        if "amount" in changes:
            values["amount"] = validate_amount(changes["amount"])

        with LogContext.bind(actor_id=actor.id, voucher_id=voucher_id):
            with self._unit_of_work("update_draft", voucher_id) as session:
                store = VoucherStore(session)
                voucher = store.get(voucher_id)
                if voucher.status != VoucherStatus.DRAFT:
                    raise InvalidTransitionError(str(voucher.id), voucher.status.value, "update_draft")
                if voucher.requestor_id != actor.id:
                    raise UnauthorizedError(actor.id, "update_draft", "only the requestor may edit a draft")

                updated = replace(voucher, **values)
                billing = voucher.billing
                if "amount" in values and billing is not None:
                    updated = replace(
                        updated,
                        payload=self._rebalance_billing(session, voucher, values["amount"]),
                    )
                saved = store.save(updated)

            logger.info(
                "voucher_updated",
                extra={"voucher_number": saved.voucher_number, "fields": sorted(values)},
            )
        return saved

    def _rebalance_billing(self, session: Session, voucher: Voucher, amount: Decimal) -> BillingDetails:
        """Billing payload for a new amount, keeping whatever was already collected."""
        billing = voucher.billing
        allocated = VoucherSelector(session).allocated_total(voucher.id)
        remaining = amount - allocated
        if remaining < 0:
            raise ValidationError(
                f"Amount {amount} is below the {allocated} already collected on {voucher.id}",
                field="amount",
            )
        status = billing.billing_status
        if allocated > 0:
            status = billing_status_after(
                amount, remaining, status, self._config.reconciliation.paid_tolerance
            )
        return replace(billing, billing_status=status, remaining_balance=remaining)

    def get_voucher(self, voucher_id: UUID | str) -> Voucher:
        """
        Raises:
            VoucherNotFoundError: Unknown id.
        """
        with self._unit_of_work("get_voucher", voucher_id) as session:
            return VoucherStore(session).get(voucher_id)
