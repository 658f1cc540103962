import pytest
import uuid
from datetime import datetime
from decimal import Decimal

from rigaby.models.user import UserRole
from rigaby.models.wallet import TransactionType
from rigaby.services.wallet_service import WalletService


async def test_livez(client):
    response = await client.get("/livez")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_balance_requires_token(client):
    response = await client.get("/api/wallet/balance")

    assert response.status_code == 401


async def test_balance_rejects_bad_token(client):
    response = await client.get("/api/wallet/balance", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


async def test_balance_for_unknown_user(client, auth_headers):
    response = await client.get("/api/wallet/balance", headers=auth_headers(uuid.uuid4()))

    assert response.status_code == 404


async def test_inactive_user_is_forbidden(client, make_user, auth_headers):
    user = await make_user(is_active=False)

    response = await client.get("/api/wallet/balance", headers=auth_headers(user.id))

    assert response.status_code == 403


async def test_get_balance(client, make_user, auth_headers):
    user = await make_user(balance="100.5", locked="25")

    response = await client.get("/api/wallet/balance", headers=auth_headers(user.id))

    assert response.status_code == 200
    body = response.json()
    assert body["available_balance"] == "100.50"
    assert body["locked_balance"] == "25.00"
    assert body["total_balance"] == "125.50"
    assert body["wallet"]["user_id"] == str(user.id)


async def test_withdraw(client, make_user, auth_headers, read_wallet):
    user = await make_user(balance="100.50", locked="25.00")
    user_id = user.id

    response = await client.post(
        "/api/wallet/withdraw",
        json={"amount": "50", "payment_method": "bank_transfer", "account_details": "123"},
        headers=auth_headers(user_id),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["new_balance"] == "50.50"
    assert body["transaction"]["status"] == "PENDING"
    assert body["transaction"]["type"] == "WITHDRAWAL"
    assert body["transaction"]["metadata"]["paymentMethod"] == "bank_transfer"
    assert (await read_wallet(user_id)).locked == Decimal("75.00")


async def test_withdraw_insufficient_funds(client, make_user, auth_headers, read_wallet):
    user = await make_user(balance="100.50")
    user_id = user.id

    response = await client.post(
        "/api/wallet/withdraw",
        json={"amount": "200", "payment_method": "bank_transfer", "account_details": "123"},
        headers=auth_headers(user_id),
    )

    assert response.status_code == 400
    assert response.json()["error"] == "InsufficientFundsError"
    assert (await read_wallet(user_id)).balance == Decimal("100.50")


async def test_withdraw_rejects_non_positive_amount(client, make_user, auth_headers):
    user = await make_user(balance="10")

    response = await client.post(
        "/api/wallet/withdraw",
        json={"amount": "-5", "payment_method": "bank_transfer", "account_details": "123"},
        headers=auth_headers(user.id),
    )

    assert response.status_code == 422


async def test_transfer_to_unknown_recipient(client, make_user, auth_headers, read_wallet):
    user = await make_user(balance="100")
    user_id = user.id

    response = await client.post(
        "/api/wallet/transfer",
        json={"amount": "10", "recipient_email": "ghost@example.com"},
        headers=auth_headers(user_id),
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Recipient not found"
    assert (await read_wallet(user_id)).balance == Decimal("100.00")


async def test_transfer(client, make_user, auth_headers, read_wallet):
    sender = await make_user(balance="100")
    recipient = await make_user(email="friend@example.com")
    sender_id, recipient_id = sender.id, recipient.id

    response = await client.post(
        "/api/wallet/transfer",
        json={"amount": "12.34", "recipient_email": "friend@example.com", "description": "Books"},
        headers=auth_headers(sender_id),
    )

    assert response.status_code == 200
    transaction = response.json()["transaction"]
    assert transaction["description"] == "Books"
    assert transaction["metadata"]["direction"] == "outgoing"
    assert (await read_wallet(sender_id)).balance == Decimal("87.66")
    assert (await read_wallet(recipient_id)).balance == Decimal("12.34")


async def test_transactions_and_stats(client, make_user, auth_headers):
    user = await make_user(balance="100")
    headers = auth_headers(user.id)
    await client.post(
        "/api/wallet/withdraw",
        json={"amount": "20", "payment_method": "paypal", "account_details": "me@example.com"},
        headers=headers,
    )

    listing = await client.get(
        "/api/wallet/transactions", params={"status": "PENDING", "limit": 10}, headers=headers
    )
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["total_pages"] == 1

    empty = await client.get(
        "/api/wallet/transactions", params={"endDate": "2000-01-01"}, headers=headers
    )
    assert empty.json()["total"] == 0

    stats = await client.get("/api/wallet/stats", headers=headers)
    assert stats.status_code == 200
    assert Decimal(stats.json()["locked_balance"]) == Decimal("20")
    assert len(stats.json()["recent_transactions"]) == 1


async def test_admin_routes_require_admin(client, make_user, auth_headers):
    user = await make_user()

    response = await client.get("/api/wallet/withdrawals/pending", headers=auth_headers(user.id))

    assert response.status_code == 403


async def test_admin_processes_withdrawal(client, make_user, auth_headers, read_wallet):
    admin = await make_user(email="admin@example.com", role=UserRole.ADMIN)
    user = await make_user(balance="100", email="saver@example.com")
    admin_id, user_id = admin.id, user.id
    requested = await client.post(
        "/api/wallet/withdraw",
        json={"amount": "40", "payment_method": "bank_transfer", "account_details": "123"},
        headers=auth_headers(user_id),
    )
    withdrawal_id = requested.json()["transaction"]["id"]

    pending = await client.get("/api/wallet/withdrawals/pending", headers=auth_headers(admin_id))
    assert pending.status_code == 200
    assert [w["user"]["email"] for w in pending.json()["withdrawals"]] == ["saver@example.com"]

    processed = await client.post(
        f"/api/wallet/withdrawals/{withdrawal_id}/process",
        json={"status": "FAILED", "admin_notes": "Account closed"},
        headers=auth_headers(admin_id),
    )
    assert processed.status_code == 200
    assert processed.json()["status"] == "FAILED"
    assert (await read_wallet(user_id)).balance == Decimal("100.00")

    again = await client.post(
        f"/api/wallet/withdrawals/{withdrawal_id}/process",
        json={"status": "COMPLETED"},
        headers=auth_headers(admin_id),
    )
    assert again.status_code == 409

    stats = await client.get("/api/wallet/platform/stats", headers=auth_headers(admin_id))
    assert stats.status_code == 200
    assert stats.json()["total_wallets"] == 2


async def test_transaction_date_filters_honour_utc_offsets(db, client, make_user, auth_headers):
    user = await make_user()
    headers = auth_headers(user.id)
    credit = await WalletService(db).add_funds(user.id, Decimal("5"), TransactionType.TASK_REWARD, "Quiz")
    credit.created_at = datetime(2024, 1, 15, 10, 0)  # stored as naive UTC
    await db.commit()

    async def total(**params):
        response = await client.get("/api/wallet/transactions", params=params, headers=headers)
        assert response.status_code == 200
        return response.json()["total"]

    # 11:00+02:00 is 09:00 UTC, before the transaction
    assert await total(startDate="2024-01-15T11:00:00+02:00") == 1
    # 13:00+02:00 is 11:00 UTC, after it
    assert await total(startDate="2024-01-15T13:00:00+02:00") == 0
    assert await total(endDate="2024-01-15T11:30:00+02:00") == 0
    assert await total(endDate="2024-01-15T05:30:00-05:00") == 1


async def test_transfer_matches_recipient_domain_case_insensitively(client, make_user, auth_headers, read_wallet):
    sender = await make_user(balance="50")
    recipient = await make_user(email="Kemi@Example.COM")
    sender_id, recipient_id = sender.id, recipient.id

    response = await client.post(
        "/api/wallet/transfer",
        json={"amount": "5", "recipient_email": "Kemi@example.com"},
        headers=auth_headers(sender_id),
    )

    assert response.status_code == 200
    assert (await read_wallet(recipient_id)).balance == Decimal("5.00")
