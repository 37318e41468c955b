"""Stored payment instruments: create, list, read, update and delete per owner."""
from __future__ import annotations

import uuid

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from gateway.shared.models import PaymentMethod, User
from gateway.shared.schemas import (
    Paginated,
    PaginationMeta,
    PaymentMethodCreate,
    PaymentMethodQuery,
    PaymentMethodResponse,
    PaymentMethodUpdate,
    clamp_page,
)

logger = structlog.get_logger(__name__)

NON_NULLABLE_FIELDS = ("type", "token", "is_default", "status")


class PaymentMethodService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, data: PaymentMethodCreate, owner_id: uuid.UUID) -> PaymentMethod:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    if await session.get(User, owner_id) is None:
                        raise NotFoundError("Related user not found")

                    taken = await session.scalar(
                        select(PaymentMethod.id).where(PaymentMethod.token == data.token)
                    )
                    if taken is not None:
                        raise ConflictError("Payment method token already exists")

                    payment_method = PaymentMethod(
                        id=uuid.uuid4(),
                        user_id=owner_id,
                        type=data.type.value,
                        provider=data.provider.value if data.provider else None,
                        token=data.token,
                        last_four=data.last_four,
                        expiry_month=data.expiry_month,
                        expiry_year=data.expiry_year,
                        is_default=data.is_default,
                        status=data.status.value,
                        metadata_=data.metadata,
                    )
                    session.add(payment_method)
            except IntegrityError as exc:
                # Concurrent insert of the same token.
                raise ConflictError("Payment method token already exists") from exc

        logger.info(
            "payment_method_created",
            payment_method_id=str(payment_method.id),
            owner_id=str(owner_id),
            type=payment_method.type,
        )
        return payment_method

    async def find_all(self, query: PaymentMethodQuery) -> Paginated[PaymentMethodResponse]:
        return await self._paginate(self._filters(query), query)

    async def find_by_user(
        self, owner_id: uuid.UUID, query: PaymentMethodQuery
    ) -> Paginated[PaymentMethodResponse]:
        return await self._paginate(self._filters(query, owner_id), query)

    async def find_one(self, payment_method_id: uuid.UUID) -> PaymentMethod:
        async with self._session_factory() as session:
            payment_method = await session.get(PaymentMethod, payment_method_id)
        if payment_method is None:
            raise NotFoundError("Payment method not found")
        return payment_method

    async def update_for_user(
        self,
        payment_method_id: uuid.UUID,
        patch: PaymentMethodUpdate,
        owner_id: uuid.UUID,
    ) -> PaymentMethod:
        changes = patch.model_dump(exclude_unset=True, mode="json")
        nulled = sorted(name for name in NON_NULLABLE_FIELDS if name in changes and changes[name] is None)
        if nulled:
            raise ValidationError(f"{', '.join(nulled)} cannot be null")
        if "metadata" in changes:
            changes["metadata_"] = changes.pop("metadata")

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    payment_method = await session.get(PaymentMethod, payment_method_id)
                    if payment_method is None:
                        raise NotFoundError("Payment method not found")
                    if payment_method.user_id != owner_id:
                        raise ForbiddenError("You do not own this payment method")

                    token = changes.get("token")
                    if token is not None and token != payment_method.token:
                        taken = await session.scalar(
                            select(PaymentMethod.id).where(PaymentMethod.token == token)
                        )
                        if taken is not None:
                            raise ConflictError("Payment method token already exists")

                    for field, value in changes.items():
                        setattr(payment_method, field, value)
            except IntegrityError as exc:
                raise ConflictError("Payment method token already exists") from exc
            await session.refresh(payment_method)

        logger.info(
            "payment_method_updated",
            payment_method_id=str(payment_method_id),
            owner_id=str(owner_id),
            fields=sorted(changes),
        )
        return payment_method

    async def remove_for_user(
        self, payment_method_id: uuid.UUID, owner_id: uuid.UUID
    ) -> PaymentMethod:
        """Delete an owned payment method; transactions keep a null reference."""
        async with self._session_factory() as session:
            async with session.begin():
                payment_method = await session.get(PaymentMethod, payment_method_id)
                if payment_method is None:
                    raise NotFoundError("Payment method not found")
                if payment_method.user_id != owner_id:
                    raise ForbiddenError("You do not own this payment method")
                await session.delete(payment_method)

        logger.info(
            "payment_method_deleted",
            payment_method_id=str(payment_method_id),
            owner_id=str(owner_id),
        )
        return payment_method

    async def _paginate(self, filters: list, query: PaymentMethodQuery) -> Paginated[PaymentMethodResponse]:
        page, limit = clamp_page(query.page, query.limit)
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(PaymentMethod).where(*filters)
            )
            result = await session.execute(
                select(PaymentMethod)
                .where(*filters)
                .order_by(PaymentMethod.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = result.scalars().all()

        return Paginated[PaymentMethodResponse](
            data=[PaymentMethodResponse.model_validate(row) for row in rows],
            meta=PaginationMeta.build(total or 0, page, limit),
        )

    @staticmethod
    def _filters(query: PaymentMethodQuery, owner_id: uuid.UUID | None = None) -> list:
        filters = []
        if owner_id is not None:
            filters.append(PaymentMethod.user_id == owner_id)
        if query.status is not None:
            filters.append(PaymentMethod.status == query.status.value)
        if query.type is not None:
            filters.append(PaymentMethod.type == query.type.value)
        if query.provider is not None:
            filters.append(PaymentMethod.provider == query.provider.value)
        if query.search:
            pattern = f"%{query.search}%"
            filters.append(
                or_(PaymentMethod.provider.ilike(pattern), PaymentMethod.last_four.ilike(pattern))
            )
        return filters
