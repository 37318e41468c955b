"""UserService: uniqueness, filtering, profile view, guarded removal."""
from __future__ import annotations

import uuid

import pytest
from sqlalchemy import func, select

from gateway.shared.errors import ConflictError, NotFoundError, ValidationError
from gateway.shared.models import PaymentMethod, UserStatus
from gateway.shared.schemas import TransactionCreate, UserCreate, UserQuery, UserUpdate
from gateway.users.service import UserService
from tests.conftest import make_payment_method


@pytest.fixture
def users(session_factory):
    return UserService(session_factory)


async def test_create_defaults_and_unique_email(users):
    user = await users.create(UserCreate(email="a@example.com", metadata={"source": "app"}))

    assert user.status == UserStatus.active.value
    assert user.kyc_verified is False
    assert user.metadata_ == {"source": "app"}

    with pytest.raises(ConflictError):
        await users.create(UserCreate(email="a@example.com"))


async def test_find_by_email(users):
    created = await users.create(UserCreate(email="b@example.com", full_name="Le Van B"))

    found = await users.find_by_email("b@example.com")

    assert found.id == created.id
    with pytest.raises(NotFoundError):
        await users.find_by_email("nobody@example.com")


async def test_find_all_filters_and_paginates(users):
    for n in range(3):
        await users.create(UserCreate(email=f"user{n}@example.com", full_name=f"Pham {n}"))
    suspended = await users.create(UserCreate(email="s@example.com", full_name="Hoang S"))
    await users.update(suspended.id, UserUpdate(status=UserStatus.suspended, kyc_verified=True))

    page = await users.find_all(UserQuery(limit=2))
    assert page.meta.total == 4
    assert len(page.data) == 2
    assert page.meta.has_next_page is True

    only_suspended = await users.find_all(UserQuery(status=UserStatus.suspended))
    assert [u.email for u in only_suspended.data] == ["s@example.com"]
    verified = await users.find_all(UserQuery(kyc_verified=True))
    assert [u.id for u in verified.data] == [suspended.id]
    searched = await users.find_all(UserQuery(search="pham"))
    assert searched.meta.total == 3


async def test_profile_lists_payment_methods(users, session_factory):
    user = await users.create(UserCreate(email="c@example.com"))
    await make_payment_method(session_factory, user)

    profile = await users.find_one(user.id)

    assert profile.email == "c@example.com"
    assert [m.last_four for m in profile.payment_methods] == ["4242"]
    with pytest.raises(NotFoundError) as exc_info:
        await users.find_one(uuid.uuid4())
    assert "not found" in exc_info.value.detail


async def test_update_rejects_email_clash_and_nulls(users):
    first = await users.create(UserCreate(email="d@example.com"))
    await users.create(UserCreate(email="e@example.com"))

    with pytest.raises(ConflictError):
        await users.update(first.id, UserUpdate(email="e@example.com"))
    with pytest.raises(ValidationError) as exc_info:
        await users.update(first.id, UserUpdate.model_validate({"email": None}))
    assert exc_info.value.detail == "email cannot be null"

    renamed = await users.update(first.id, UserUpdate(email="d@example.com", full_name="Dang D"))
    assert renamed.full_name == "Dang D"


async def test_remove_deletes_user_and_payment_methods(users, session_factory):
    user = await users.create(UserCreate(email="f@example.com"))
    await make_payment_method(session_factory, user)

    deleted = await users.remove(user.id)

    assert deleted.message == "User f@example.com has been deleted successfully"
    assert deleted.user.id == user.id
    async with session_factory() as session:
        left = await session.scalar(select(func.count()).select_from(PaymentMethod))
    assert left == 0
    with pytest.raises(NotFoundError):
        await users.remove(user.id)


async def test_remove_refused_while_transactions_exist(users, transactions):
    user = await users.create(UserCreate(email="g@example.com"))
    await transactions.create(TransactionCreate(amount=1000), user.id)

    with pytest.raises(ConflictError):
        await users.remove(user.id)
    assert (await users.find_by_email("g@example.com")).id == user.id
