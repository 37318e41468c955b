"""Local user records: the owners of payment methods and transactions."""
from __future__ import annotations

import uuid

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gateway.shared.errors import ConflictError, NotFoundError, ValidationError
from gateway.shared.models import PaymentMethod, Transaction, User
from gateway.shared.schemas import (
    Paginated,
    PaginationMeta,
    PaymentMethodSummary,
    UserCreate,
    UserDeleted,
    UserProfile,
    UserQuery,
    UserResponse,
    UserSummary,
    UserUpdate,
    clamp_page,
)

logger = structlog.get_logger(__name__)

NON_NULLABLE_FIELDS = ("email", "status", "kyc_verified")


class UserService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, data: UserCreate) -> User:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    await self._ensure_email_free(session, data.email)
                    user = User(
                        id=uuid.uuid4(),
                        email=data.email,
                        full_name=data.full_name,
                        phone=data.phone,
                        metadata_=data.metadata,
                    )
                    session.add(user)
            except IntegrityError as exc:
                raise ConflictError("User with this email already exists") from exc
            await session.refresh(user)

        logger.info("user_created", user_id=str(user.id))
        return user

    async def find_all(self, query: UserQuery) -> Paginated[UserResponse]:
        page, limit = clamp_page(query.page, query.limit)
        filters = []
        if query.status is not None:
            filters.append(User.status == query.status.value)
        if query.kyc_verified is not None:
            filters.append(User.kyc_verified.is_(query.kyc_verified))
        if query.search:
            pattern = f"%{query.search}%"
            filters.append(or_(User.email.ilike(pattern), User.full_name.ilike(pattern)))

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(User).where(*filters))
            result = await session.execute(
                select(User)
                .where(*filters)
                .order_by(User.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            rows = result.scalars().all()

        return Paginated[UserResponse](
            data=[UserResponse.model_validate(row) for row in rows],
            meta=PaginationMeta.build(total or 0, page, limit),
        )

    async def find_one(self, user_id: uuid.UUID) -> UserProfile:
        """User with the payment methods stored for them."""
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User with ID {user_id} not found")
            methods = await session.scalars(
                select(PaymentMethod)
                .where(PaymentMethod.user_id == user_id)
                .order_by(PaymentMethod.created_at.desc())
            )
            payment_methods = [PaymentMethodSummary.model_validate(m) for m in methods]

        profile = UserProfile.model_validate(user)
        profile.payment_methods = payment_methods
        return profile

    async def find_by_email(self, email: str) -> User:
        async with self._session_factory() as session:
            user = await session.scalar(select(User).where(User.email == email))
        if user is None:
            raise NotFoundError(f"User with email {email} not found")
        return user

    async def update(self, user_id: uuid.UUID, patch: UserUpdate) -> User:
        changes = patch.model_dump(exclude_unset=True, mode="json")
        nulled = sorted(name for name in NON_NULLABLE_FIELDS if name in changes and changes[name] is None)
        if nulled:
            raise ValidationError(f"{', '.join(nulled)} cannot be null")
        if "metadata" in changes:
            changes["metadata_"] = changes.pop("metadata")

        async with self._session_factory() as session:
            try:
                async with session.begin():
                    user = await session.get(User, user_id)
                    if user is None:
                        raise NotFoundError(f"User with ID {user_id} not found")
                    if changes.get("email") not in (None, user.email):
                        await self._ensure_email_free(session, changes["email"])
                    for field, value in changes.items():
                        setattr(user, field, value)
            except IntegrityError as exc:
                raise ConflictError("User with this email already exists") from exc
            await session.refresh(user)

        logger.info("user_updated", user_id=str(user_id), fields=sorted(changes))
        return user

    async def remove(self, user_id: uuid.UUID) -> UserDeleted:
        """Delete a user and their payment methods; refused while they own transactions."""
        async with self._session_factory() as session:
            async with session.begin():
                user = await session.get(User, user_id)
                if user is None:
                    raise NotFoundError(f"User with ID {user_id} not found")
                owned = await session.scalar(
                    select(func.count()).select_from(Transaction).where(Transaction.user_id == user_id)
                )
                if owned:
                    raise ConflictError("User has transactions and cannot be deleted")

                summary = UserSummary.model_validate(user)
                await session.execute(delete(PaymentMethod).where(PaymentMethod.user_id == user_id))
                await session.execute(delete(User).where(User.id == user_id))

        logger.info("user_deleted", user_id=str(user_id))
        return UserDeleted(
            message=f"User {summary.email} has been deleted successfully",
            user=summary,
        )

    @staticmethod
    async def _ensure_email_free(session: AsyncSession, email: str) -> None:
        taken = await session.scalar(select(User.id).where(User.email == email))
        if taken is not None:
            raise ConflictError("User with this email already exists")
