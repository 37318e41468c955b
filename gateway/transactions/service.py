"""
Transaction service.

Sole writer of transaction rows and sole emitter of ``transaction.created``
and ``transaction.status_updated``.  Every public method opens its own
session; compound read-modify-write paths (status change + audit event) run
inside one ``session.begin()`` block with the row locked, so the status that
is checked is the status that is overwritten.

Status writes go through ``_apply_status``:
  - the same status again is a no-op,
  - leaving a terminal status raises InvalidTransitionError,
  - the first move into ``completed`` stamps ``completed_at``.
"""
from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from gateway.shared import metrics
from gateway.shared.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from gateway.shared.events import (
    TRANSACTION_CREATED,
    TRANSACTION_STATUS_UPDATED,
    EventBus,
    TransactionCreated,
    TransactionStatusUpdated,
)
from gateway.shared.models import (
    FAILED_GROUP,
    PENDING_GROUP,
    TERMINAL_STATUSES,
    PaymentMethod,
    Refund,
    Transaction,
    TransactionEvent,
    TransactionStatus,
    User,
    utcnow,
)
from gateway.shared.schemas import (
    Paginated,
    PaginationMeta,
    TransactionCreate,
    TransactionDetailResponse,
    TransactionEventResponse,
    TransactionQuery,
    TransactionResponse,
    TransactionStats,
    TransactionUpdate,
    UserSummary,
    clamp_page,
)

logger = structlog.get_logger(__name__)

EVENT_CREATED = "created"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_GATEWAY_RESPONSE_UPDATED = "GATEWAY_RESPONSE_UPDATED"

RECENT_EVENTS_LIMIT = 10

# Columns a patch may change but never clear.
NON_NULLABLE_FIELDS = ("amount", "currency", "status")

# Statuses that end the payment window and make the timeout job redundant.
_CANCEL_TIMEOUT_STATUSES = frozenset(
    {
        TransactionStatus.completed.value,
        TransactionStatus.failed.value,
        TransactionStatus.cancelled.value,
    }
)


def _owner_loaders():
    return (selectinload(Transaction.user), selectinload(Transaction.payment_method))


class TransactionService:
    """Owns transaction persistence, state transitions and lifecycle events."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], bus: EventBus) -> None:
        self._session_factory = session_factory
        self._bus = bus

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, data: TransactionCreate, owner_id: uuid.UUID) -> Transaction:
        """
        Insert a PENDING transaction and its ``created`` audit event atomically,
        then emit ``transaction.created``.  Nothing is emitted if the unit fails.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    user = await session.get(User, owner_id)
                    if user is None:
                        raise ValidationError("User not found")

                    payment_method = None
                    if data.payment_method_id is not None:
                        payment_method = await self._owned_payment_method(
                            session, data.payment_method_id, owner_id
                        )

                    transaction = Transaction(
                        id=uuid.uuid4(),
                        user_id=owner_id,
                        payment_method_id=data.payment_method_id,
                        amount=data.amount,
                        currency=data.currency or "VND",
                        description=data.description,
                        status=TransactionStatus.pending.value,
                        gateway_provider=data.gateway_provider,
                        ip_address=data.ip_address,
                        user_agent=data.user_agent,
                        device_id=data.device_id,
                    )
                    transaction.user = user
                    transaction.payment_method = payment_method
                    session.add(transaction)
                    await session.flush()

                    session.add(
                        TransactionEvent(
                            transaction_id=transaction.id,
                            event_type=EVENT_CREATED,
                            to_value=TransactionStatus.pending.value,
                            metadata_={"created_by": "system"},
                        )
                    )
        except ValidationError:
            raise
        except Exception as exc:
            logger.error("transaction_create_failed", owner_id=str(owner_id), error=str(exc))
            raise ValidationError(f"Failed to create transaction: {exc}") from exc

        metrics.TRANSACTIONS_CREATED.inc()
        logger.info(
            "transaction_created",
            transaction_id=str(transaction.id),
            owner_id=str(owner_id),
            amount=transaction.amount,
        )
        self._bus.emit(
            TRANSACTION_CREATED,
            TransactionCreated(
                transaction_id=transaction.id,
                owner_id=owner_id,
                amount=transaction.amount,
                currency=transaction.currency,
                description=transaction.description,
                payment_method_id=transaction.payment_method_id,
            ),
        )
        return transaction

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def find_one(self, transaction_id: uuid.UUID) -> TransactionDetailResponse:
        """Transaction with owner, payment method, latest audit events and refunds."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .options(*_owner_loaders(), selectinload(Transaction.refunds))
            )
            transaction = result.scalar_one_or_none()
            if transaction is None:
                raise NotFoundError(f"Transaction with ID {transaction_id} not found")

            events = await session.execute(
                select(TransactionEvent)
                .where(TransactionEvent.transaction_id == transaction_id)
                .order_by(TransactionEvent.created_at.desc(), TransactionEvent.id.desc())
                .limit(RECENT_EVENTS_LIMIT)
            )
            detail = TransactionDetailResponse.model_validate(transaction)
            return detail.model_copy(
                update={
                    "events": [
                        TransactionEventResponse.model_validate(event)
                        for event in events.scalars().all()
                    ]
                }
            )

    async def find_all(self, query: TransactionQuery) -> Paginated[TransactionResponse]:
        page, limit = clamp_page(query.page, query.limit)
        filters = self._filters(query)

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Transaction).where(*filters)
            )
            result = await session.execute(
                select(Transaction)
                .where(*filters)
                .options(*_owner_loaders())
                .order_by(Transaction.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = result.scalars().all()

        return Paginated[TransactionResponse](
            data=[TransactionResponse.model_validate(row) for row in rows],
            meta=PaginationMeta.build(total or 0, page, limit),
        )

    async def find_by_user(
        self, user_id: uuid.UUID, query: TransactionQuery
    ) -> Paginated[TransactionResponse]:
        return await self.find_all(query.model_copy(update={"user_id": user_id}))

    async def find_owner_by_external_ref(self, external_ref: int) -> UserSummary:
        """Contact details of the owner of the transaction with this order code."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(User)
                .join(Transaction, Transaction.user_id == User.id)
                .where(Transaction.external_transaction_id == external_ref)
                .limit(1)
            )
            owner = result.scalars().first()
        if owner is None:
            raise NotFoundError("Transaction not found")
        return UserSummary.model_validate(owner)

    async def get_transaction_stats(self, owner_id: uuid.UUID | None = None) -> TransactionStats:
        completed = Transaction.status == TransactionStatus.completed.value
        stmt = select(
            func.count(Transaction.id),
            func.sum(case((completed, 1), else_=0)),
            func.sum(case((Transaction.status.in_(PENDING_GROUP), 1), else_=0)),
            func.sum(case((Transaction.status.in_(FAILED_GROUP), 1), else_=0)),
            func.sum(case((completed, Transaction.amount), else_=0)),
        )
        if owner_id is not None:
            stmt = stmt.where(Transaction.user_id == owner_id)

        async with self._session_factory() as session:
            total, completed_count, pending, failed, total_amount = (
                await session.execute(stmt)
            ).one()

        return TransactionStats(
            total=total or 0,
            completed=completed_count or 0,
            pending=pending or 0,
            failed=failed or 0,
            total_amount=total_amount or 0,
        )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update(self, transaction_id: uuid.UUID, patch: TransactionUpdate) -> Transaction:
        """Apply a partial patch; a status change appends one audit event."""
        changes: dict[str, Any] = patch.model_dump(exclude_unset=True)
        nulled = sorted(name for name in NON_NULLABLE_FIELDS if name in changes and changes[name] is None)
        if nulled:
            raise ValidationError(f"{', '.join(nulled)} cannot be null")
        new_status = changes.pop("status", None)

        async with self._session_factory() as session:
            async with session.begin():
                transaction = await self._locked(session, Transaction.id == transaction_id)
                if transaction is None:
                    raise NotFoundError(f"Transaction with ID {transaction_id} not found")

                if changes.get("payment_method_id") is not None:
                    await self._owned_payment_method(
                        session, changes["payment_method_id"], transaction.user_id
                    )
                for field, value in changes.items():
                    setattr(transaction, field, value)

                if new_status is not None:
                    previous = transaction.status
                    if self._apply_status(transaction, new_status):
                        session.add(
                            self._status_event(transaction.id, EVENT_STATUS_CHANGED, previous, transaction.status)
                        )

            loaded = await session.execute(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .options(*_owner_loaders())
                .execution_options(populate_existing=True)
            )
            transaction = loaded.scalar_one()

        logger.info(
            "transaction_updated",
            transaction_id=str(transaction_id),
            fields=sorted(changes) + (["status"] if new_status is not None else []),
            status=transaction.status,
        )
        return transaction

    async def update_gateway_response(
        self,
        external_ref: int,
        raw_response: dict[str, Any],
        new_status: TransactionStatus | str,
    ) -> tuple[Transaction, bool]:
        """
        Store the provider payload and status for the transaction with this
        external reference.

        Returns ``(transaction, changed)``.  Re-applying the terminal status the
        transaction already has is accepted and reported as ``changed=False``:
        the stored payload, audit trail and events are left untouched.
        """
        target = TransactionStatus(new_status).value

        async with self._session_factory() as session:
            async with session.begin():
                transaction = await self._locked(
                    session, Transaction.external_transaction_id == external_ref
                )
                if transaction is None:
                    raise NotFoundError("Transaction not found")

                previous = transaction.status
                if previous == target and previous in TERMINAL_STATUSES:
                    changed = False
                else:
                    self._apply_status(transaction, target)
                    transaction.gateway_response = raw_response
                    session.add(
                        self._status_event(
                            transaction.id, EVENT_GATEWAY_RESPONSE_UPDATED, previous, target
                        )
                    )
                    changed = True

        if not changed:
            logger.info(
                "gateway_response_duplicate",
                transaction_id=str(transaction.id),
                external_ref=external_ref,
                status=target,
            )
            return transaction, False

        logger.info(
            "gateway_response_updated",
            transaction_id=str(transaction.id),
            external_ref=external_ref,
            from_status=previous,
            to_status=target,
        )
        if target in _CANCEL_TIMEOUT_STATUSES:
            self._bus.emit(
                TRANSACTION_STATUS_UPDATED,
                TransactionStatusUpdated(
                    transaction_id=transaction.id,
                    status=target,
                    should_cancel_timeout=True,
                ),
            )
        return transaction, True

    async def update_status(
        self, transaction_id: uuid.UUID, status: TransactionStatus | str
    ) -> Transaction:
        """Set status and append an audit event (no-op if unchanged)."""
        async with self._session_factory() as session:
            async with session.begin():
                transaction = await self._locked(session, Transaction.id == transaction_id)
                if transaction is None:
                    raise NotFoundError("Transaction not found")

                previous = transaction.status
                if self._apply_status(transaction, status):
                    session.add(
                        self._status_event(transaction.id, EVENT_STATUS_CHANGED, previous, transaction.status)
                    )

        logger.info(
            "transaction_status_updated",
            transaction_id=str(transaction_id),
            from_status=previous,
            to_status=transaction.status,
        )
        return transaction

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def remove(self, transaction_id: uuid.UUID) -> uuid.UUID:
        """Delete a transaction and its audit events; refused if it has refunds."""
        async with self._session_factory() as session:
            async with session.begin():
                transaction = await session.get(Transaction, transaction_id)
                if transaction is None:
                    raise NotFoundError(f"Transaction with ID {transaction_id} not found")

                refunds = await session.scalar(
                    select(func.count())
                    .select_from(Refund)
                    .where(Refund.transaction_id == transaction_id)
                )
                if refunds:
                    raise ConflictError("Cannot delete transaction with existing refunds")

                await session.execute(
                    delete(TransactionEvent).where(TransactionEvent.transaction_id == transaction_id)
                )
                await session.execute(delete(Transaction).where(Transaction.id == transaction_id))

        logger.info("transaction_deleted", transaction_id=str(transaction_id))
        return transaction_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_status(transaction: Transaction, status: TransactionStatus | str) -> bool:
        target = TransactionStatus(status).value
        if transaction.status == target:
            return False
        if transaction.is_terminal:
            raise InvalidTransitionError(transaction.id, transaction.status, target)

        transaction.status = target
        if target == TransactionStatus.completed.value and transaction.completed_at is None:
            transaction.completed_at = utcnow()
        return True

    @staticmethod
    def _status_event(
        transaction_id: uuid.UUID, event_type: str, from_value: str, to_value: str
    ) -> TransactionEvent:
        return TransactionEvent(
            transaction_id=transaction_id,
            event_type=event_type,
            from_value=from_value,
            to_value=to_value,
            metadata_={"updated_by": "system"},
        )

    @staticmethod
    async def _locked(session: AsyncSession, criterion) -> Transaction | None:
        result = await session.execute(
            select(Transaction).where(criterion).limit(1).with_for_update()
        )
        return result.scalars().first()

    @staticmethod
    async def _owned_payment_method(
        session: AsyncSession, payment_method_id: uuid.UUID, owner_id: uuid.UUID
    ) -> PaymentMethod:
        payment_method = await session.get(PaymentMethod, payment_method_id)
        if payment_method is None:
            raise ValidationError("Payment method not found")
        if payment_method.user_id != owner_id:
            raise ValidationError("Payment method does not belong to this user")
        return payment_method

    @staticmethod
    def _filters(query: TransactionQuery) -> list:
        filters = []
        if query.user_id is not None:
            filters.append(Transaction.user_id == query.user_id)
        if query.status is not None:
            filters.append(Transaction.status == TransactionStatus(query.status).value)
        if query.gateway_provider:
            filters.append(Transaction.gateway_provider == query.gateway_provider)
        if query.external_transaction_id is not None:
            filters.append(Transaction.external_transaction_id == query.external_transaction_id)
        if query.created_from is not None:
            filters.append(Transaction.created_at >= query.created_from)
        if query.created_to is not None:
            filters.append(Transaction.created_at <= query.created_to)
        return filters
