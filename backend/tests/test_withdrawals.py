from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from backend.models import (
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
    WithdrawalRequest,
    WithdrawalStatus,
)


async def test_list_withdrawal_requests_search(client, auth_headers, factory, api):
    ravi = await factory.user(name="Ravi", phone="9111111111")
    anita = await factory.user(name="Anita", phone="9222222222")
    first = await factory.withdrawal(ravi, upi_id="ravi@okbank")
    second = await factory.withdrawal(anita, upi_id="anita@ybl")

    resp = await client.get(f"{api}/withdrawal-requests", headers=auth_headers, params={"search": "okbank"})
    assert [i["id"] for i in resp.json()["data"]["items"]] == [str(first.id)]

    resp = await client.get(f"{api}/withdrawal-requests", headers=auth_headers, params={"search": "anita"})
    assert [i["id"] for i in resp.json()["data"]["items"]] == [str(second.id)]

    resp = await client.get(f"{api}/withdrawal-requests", headers=auth_headers, params={"search": "91111"})
    items = resp.json()["data"]["items"]
    assert [i["id"] for i in items] == [str(first.id)]
    assert items[0]["user"]["name"] == "Ravi"
    assert items[0]["transaction"]["status"] == "pending"


async def test_withdrawal_details(client, auth_headers, factory, api):
    user = await factory.user()
    request = await factory.withdrawal(user, amount="250")

    resp = await client.get(f"{api}/withdrawal-requests/{request.id}", headers=auth_headers)
    assert resp.status_code == 200
    assert Decimal(resp.json()["data"]["amount"]) == Decimal("250")

    resp = await client.get(f"{api}/withdrawal-requests/{uuid4()}", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Withdrawal request not found"


async def test_approve_withdrawal_completes_transaction(client, auth_headers, admin, factory, api, session_factory):
    user = await factory.user(balance="0")
    request = await factory.withdrawal(user, amount="200")

    resp = await client.put(
        f"{api}/withdrawal-requests/{request.id}/approve",
        headers=auth_headers,
        json={"notes": "Paid", "payment_proof": "UTR123456"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "approved"
    assert data["payment_proof"] == "UTR123456"
    assert data["processed_by"]["id"] == str(admin.id)

    async with session_factory() as session:
        tx = await session.get(Transaction, request.transaction_id)
        assert tx.status == TransactionStatus.COMPLETED
        assert (await session.get(User, user.id)).balance == Decimal("0.00")


async def test_reject_withdrawal_refunds_user(client, auth_headers, factory, api, session_factory):
    user = await factory.user(balance="50")
    request = await factory.withdrawal(user, amount="200")

    resp = await client.put(
        f"{api}/withdrawal-requests/{request.id}/reject",
        headers=auth_headers,
        json={"reason": "UPI id does not match the account holder"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "rejected"
    assert data["rejection_reason"] == "UPI id does not match the account holder"

    async with session_factory() as session:
        assert (await session.get(User, user.id)).balance == Decimal("250.00")
        original = await session.get(Transaction, request.transaction_id)
        assert original.status == TransactionStatus.CANCELLED

        refund = (
            await session.execute(select(Transaction).where(Transaction.type == TransactionType.REFUND))
        ).scalar_one()
        assert refund.related_transaction_id == request.transaction_id
        assert (refund.balance_before, refund.balance_after) == (Decimal("50.00"), Decimal("250.00"))


async def test_processed_withdrawal_cannot_be_processed_again(client, auth_headers, factory, api, session_factory):
    user = await factory.user(balance="0")
    request = await factory.withdrawal(user)

    resp = await client.put(f"{api}/withdrawal-requests/{request.id}/approve", headers=auth_headers, json={})
    assert resp.status_code == 200

    resp = await client.put(
        f"{api}/withdrawal-requests/{request.id}/reject",
        headers=auth_headers,
        json={"reason": "Changed my mind"},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Request has already been processed"

    async with session_factory() as session:
        stored = await session.get(WithdrawalRequest, request.id)
        assert stored.status == WithdrawalStatus.APPROVED
        assert (await session.get(User, user.id)).balance == Decimal("0.00")


async def test_approve_withdrawal_without_body(client, auth_headers, factory, api, session_factory):
    user = await factory.user(balance="0")
    request = await factory.withdrawal(user)

    resp = await client.put(f"{api}/withdrawal-requests/{request.id}/approve", headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "approved"
    assert resp.json()["data"]["payment_proof"] is None
    async with session_factory() as session:
        tx = await session.get(Transaction, request.transaction_id)
        assert tx.status == TransactionStatus.COMPLETED
