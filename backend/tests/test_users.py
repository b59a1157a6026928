from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from backend.models import RoomStatus, Transaction, TransactionType, User


async def test_list_users_with_pagination(client, auth_headers, factory, api):
    for _ in range(3):
        await factory.user()

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"limit": 2})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert len(data["items"]) == 2
    assert data["pagination"] == {
        "current_page": 1,
        "total_pages": 2,
        "total_items": 3,
        "items_per_page": 2,
    }


async def test_list_users_search_and_status(client, auth_headers, factory, api):
    await factory.user(name="Ravi Kumar", phone="9000000001")
    await factory.user(name="Anita", phone="9000000002", is_active=False)

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"search": "ravi"})
    names = [u["name"] for u in resp.json()["data"]["items"]]
    assert names == ["Ravi Kumar"]

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"search": "0002"})
    assert [u["name"] for u in resp.json()["data"]["items"]] == ["Anita"]

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"status": "blocked"})
    assert [u["name"] for u in resp.json()["data"]["items"]] == ["Anita"]


async def test_list_users_sorting(client, auth_headers, factory, api):
    await factory.user(name="Low", balance="10")
    await factory.user(name="High", balance="500")

    resp = await client.get(
        f"{api}/users",
        headers=auth_headers,
        params={"sort_by": "balance", "sort_order": "desc"},
    )
    assert [u["name"] for u in resp.json()["data"]["items"]] == ["High", "Low"]


async def test_list_users_rejects_bad_parameters(client, auth_headers, api):
    resp = await client.get(f"{api}/users", headers=auth_headers, params={"sort_by": "password"})
    assert resp.status_code == 400

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"limit": 500})
    assert resp.status_code == 422

    resp = await client.get(f"{api}/users", headers=auth_headers, params={"page": 0})
    assert resp.status_code == 422


async def test_user_win_rate(client, auth_headers, factory, api):
    await factory.user(total_games=3, total_wins=2)

    resp = await client.get(f"{api}/users", headers=auth_headers)
    assert resp.json()["data"]["items"][0]["win_rate"] == 67


async def test_user_details_include_recent_activity(client, auth_headers, factory, api):
    user = await factory.user(balance="100")
    other = await factory.user()
    await factory.room(players=[user, other])
    await factory.transaction(user, TransactionType.DEPOSIT, "100")

    resp = await client.get(f"{api}/users/{user.id}", headers=auth_headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["id"] == str(user.id)
    assert len(data["recent_transactions"]) == 1
    assert len(data["recent_rooms"]) == 1


async def test_user_details_not_found(client, auth_headers, api):
    resp = await client.get(f"{api}/users/{uuid4()}", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["message"] == "User not found"


async def test_block_and_unblock_user(client, auth_headers, admin, factory, api, session_factory):
    user = await factory.user()

    resp = await client.put(f"{api}/users/{user.id}/block", headers=auth_headers, json={"reason": "Cheating"})
    assert resp.status_code == 200

    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.is_active is False
        assert stored.block_reason == "Cheating"
        assert stored.blocked_by_id == admin.id

    resp = await client.put(f"{api}/users/{user.id}/block", headers=auth_headers, json={})
    assert resp.status_code == 400

    resp = await client.put(f"{api}/users/{user.id}/unblock", headers=auth_headers)
    assert resp.status_code == 200

    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.is_active is True
        assert stored.block_reason is None

    resp = await client.put(f"{api}/users/{user.id}/unblock", headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "User is not blocked"


async def test_add_balance_records_ledger_entry(client, auth_headers, admin, factory, api, session_factory):
    user = await factory.user(balance="100")

    resp = await client.put(
        f"{api}/users/{user.id}/balance",
        headers=auth_headers,
        json={"amount": "50", "type": "add", "reason": "Promo bonus"},
    )

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert Decimal(data["user"]["old_balance"]) == Decimal("100")
    assert Decimal(data["user"]["new_balance"]) == Decimal("150")
    tx = data["transaction"]
    assert tx["type"] == "admin_credit"
    assert Decimal(tx["balance_before"]) == Decimal("100")
    assert Decimal(tx["balance_after"]) == Decimal("150")
    assert tx["processed_by"]["username"] == admin.username
    assert tx["metadata"]["admin_action"] is True

    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.balance == Decimal("150.00")


async def test_deduct_balance(client, auth_headers, factory, api):
    user = await factory.user(balance="100")

    resp = await client.put(
        f"{api}/users/{user.id}/balance",
        headers=auth_headers,
        json={"amount": "40", "type": "deduct", "reason": "Chargeback"},
    )

    assert resp.status_code == 200
    assert Decimal(resp.json()["data"]["user"]["new_balance"]) == Decimal("60")
    assert resp.json()["data"]["transaction"]["type"] == "admin_debit"


async def test_deduct_more_than_balance_fails_without_changes(client, auth_headers, factory, api, session_factory):
    user = await factory.user(balance="30")

    resp = await client.put(
        f"{api}/users/{user.id}/balance",
        headers=auth_headers,
        json={"amount": "40", "type": "deduct", "reason": "Chargeback"},
    )

    assert resp.status_code == 400
    assert resp.json()["message"] == "Insufficient balance to deduct"
    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.balance == Decimal("30.00")
        count = (await session.execute(select(Transaction))).scalars().all()
        assert count == []


async def test_balance_update_validation(client, auth_headers, factory, api):
    user = await factory.user(balance="30")
    url = f"{api}/users/{user.id}/balance"

    resp = await client.put(url, headers=auth_headers, json={"amount": "-5", "type": "add", "reason": "Oops"})
    assert resp.status_code == 400

    resp = await client.put(url, headers=auth_headers, json={"amount": "5", "type": "steal", "reason": "Oops"})
    assert resp.status_code == 400
    assert "Invalid type" in resp.json()["message"]

    resp = await client.put(
        f"{api}/users/{uuid4()}/balance",
        headers=auth_headers,
        json={"amount": "5", "type": "add", "reason": "Bonus"},
    )
    assert resp.status_code == 404


async def test_user_activity(client, auth_headers, factory, api):
    user = await factory.user(balance="100")
    await factory.room(players=[user], status=RoomStatus.WAITING)
    for _ in range(3):
        await factory.transaction(user, TransactionType.DEPOSIT, "10")

    resp = await client.get(f"{api}/users/{user.id}/activity", headers=auth_headers, params={"limit": 2})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["user"]["id"] == str(user.id)
    assert len(data["transactions"]) == 2
    assert data["pagination"]["total_items"] == 3
    assert len(data["rooms"]) == 1


async def test_block_user_without_body_uses_default_reason(client, auth_headers, factory, api, session_factory):
    user = await factory.user()

    resp = await client.put(f"{api}/users/{user.id}/block", headers=auth_headers)

    assert resp.status_code == 200
    async with session_factory() as session:
        stored = await session.get(User, user.id)
        assert stored.is_active is False
        assert stored.block_reason == "Blocked by admin"
