import pytest
import uuid
from decimal import Decimal

from rigaby.models.user import UserRole


async def test_create_user_opens_empty_wallet(user_service, read_wallet):
    user = await user_service.create_user("ada@example.com", "Ada", "Obi")

    assert user.role == UserRole.READER
    assert user.is_active is True
    assert user.referral_code
    assert user.full_name == "Ada Obi"
    wallet = await read_wallet(user.id)
    assert wallet.balance == Decimal("0")
    assert wallet.locked == Decimal("0")


async def test_referral_codes_are_unique(make_user):
    first = await make_user()
    second = await make_user()

    assert first.referral_code != second.referral_code


async def test_lookups(user_service, make_user):
    user = await make_user(email="find.me@example.com")

    assert (await user_service.get_user(user.id)).email == "find.me@example.com"
    assert (await user_service.get_user_by_email("find.me@example.com")).id == user.id
    assert (await user_service.get_user_by_referral_code(user.referral_code)).id == user.id
    assert await user_service.get_user_by_email("missing@example.com") is None
    assert await user_service.get_user(uuid.uuid4()) is None


async def test_get_referrer(user_service, make_user):
    referrer = await make_user()
    referred = await make_user(referred_by=referrer.id)

    assert await user_service.get_referrer(referred.id) == referrer.id
    assert await user_service.get_referrer(referrer.id) is None
    assert await user_service.get_referrer(uuid.uuid4()) is None


async def test_emails_are_stored_and_matched_with_normalized_domain(user_service):
    user = await user_service.create_user("Tunde@Example.COM", "Tunde", "Bello")

    assert user.email == "Tunde@example.com"
    assert (await user_service.get_user_by_email("Tunde@EXAMPLE.com")).id == user.id
    assert await user_service.get_user_by_email("not-an-address") is None
