import pytest
from httpx import AsyncClient

from vsend.tests.support import TEST_PIN


async def register(client: AsyncClient, phone: str, first_name: str = "", pin: str = TEST_PIN):
    resp = await client.post("/api/users", json={"phone_number": phone, "first_name": first_name})
    assert resp.status_code == 201
    data = resp.json()
    resp = await client.post("/api/pin/setup", json={
        "user_id": data["user"]["id"],
        "pin": pin,
        "confirm_pin": pin,
    })
    assert resp.status_code == 201
    return data["user"]["id"], data["account"]["id"]


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}

@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    resp = await client.post("/api/users", json={"phone_number": "+233241234567", "first_name": "Ama", "last_name": "Owusu"})
    assert resp.status_code == 201
    data = resp.json()
    assert data["user"]["phone_number"] == "0241234567"
    assert data["user"]["full_name"] == "Ama Owusu"
    assert float(data["account"]["balance"]) == 0.0
    assert data["account"]["currency"] == "GHS"

    resp = await client.post("/api/users", json={"phone_number": "0241234567"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "PHONE_ALREADY_REGISTERED"

@pytest.mark.asyncio
async def test_pin_flow(client: AsyncClient):
    resp = await client.post("/api/users", json={"phone_number": "0241234567"})
    user_id = resp.json()["user"]["id"]

    resp = await client.get(f"/api/pin/{user_id}")
    assert resp.json()["is_pin_set"] is False

    resp = await client.post("/api/pin/setup", json={"user_id": user_id, "pin": "12", "confirm_pin": "12"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "PIN_VALIDATION"

    resp = await client.post("/api/pin/setup", json={"user_id": user_id, "pin": "1234", "confirm_pin": "1234"})
    assert resp.status_code == 201

    resp = await client.get(f"/api/pin/{user_id}")
    assert resp.json()["is_pin_set"] is True

    resp = await client.post("/api/pin/change", json={
        "user_id": user_id, "old_pin": "0000", "new_pin": "5678", "confirm_pin": "5678",
    })
    assert resp.status_code == 403

    resp = await client.post("/api/pin/change", json={
        "user_id": user_id, "old_pin": "1234", "new_pin": "5678", "confirm_pin": "5678",
    })
    assert resp.status_code == 200

@pytest.mark.asyncio
async def test_transfer_flow(client: AsyncClient):
    sender_id, sender_account = await register(client, "0241234567", "Ama")
    recipient_id, recipient_account = await register(client, "0551234567", "Kofi")

    # Fund the sender through a confirmed top-up
    resp = await client.post("/api/topups", json={"user_id": sender_id, "amount": 200.00, "pin": TEST_PIN})
    assert resp.status_code == 201
    reference = resp.json()["reference"]
    resp = await client.post(f"/api/topups/{reference}/verify")
    assert resp.status_code == 200
    assert resp.json()["type"] == "topup"

    resp = await client.get("/api/recipients/0551234567")
    assert resp.json()["full_name"] == "Kofi"

    resp = await client.post("/api/transfers", json={
        "user_id": sender_id,
        "to_phone_number": "0551234567",
        "amount": 50.00,
        "description": "Lunch",
        "pin": TEST_PIN,
    })
    assert resp.status_code == 201
    transfer = resp.json()
    assert transfer["type"] == "transfer_out"

    resp = await client.get(f"/api/users/{sender_id}/account")
    assert float(resp.json()["balance"]) == 150.00
    resp = await client.get(f"/api/users/{recipient_id}/account")
    assert float(resp.json()["balance"]) == 50.00

    resp = await client.get(f"/api/transactions/{transfer['id']}/receipt")
    assert resp.status_code == 200
    receipt = resp.json()
    assert receipt["receipt_type"] == "send"
    assert float(receipt["balance_after"]) == 150.00

    resp = await client.get(f"/api/receipts/{receipt['receipt_number']}")
    assert resp.json()["transaction_id"] == transfer["id"]

    resp = await client.get(f"/api/users/{recipient_id}/receipts")
    assert [r["receipt_number"] for r in resp.json()] == [receipt["receipt_number"]]

    resp = await client.get(f"/api/accounts/{sender_account}/transactions", params={"type": "transfer_out"})
    assert [t["id"] for t in resp.json()] == [transfer["id"]]

@pytest.mark.asyncio
async def test_insufficient_funds(client: AsyncClient):
    sender_id, sender_account = await register(client, "0241234567")
    await register(client, "0551234567")

    resp = await client.post("/api/transfers", json={
        "user_id": sender_id,
        "to_phone_number": "0551234567",
        "amount": 10.00,
        "pin": TEST_PIN,
    })
    assert resp.status_code == 400
    assert resp.json()["code"] == "INSUFFICIENT_FUNDS"

    resp = await client.get(f"/api/accounts/{sender_account}/transactions")
    assert resp.json() == []

@pytest.mark.asyncio
async def test_wrong_pin_rejected(client: AsyncClient):
    sender_id, _ = await register(client, "0241234567")
    await register(client, "0551234567")

    resp = await client.post("/api/payments", json={
        "user_id": sender_id,
        "merchant_phone": "0551234567",
        "amount": 10.00,
        "pin": "9999",
    })
    assert resp.status_code == 403
    assert resp.json()["code"] == "INVALID_PIN"

@pytest.mark.asyncio
async def test_amount_precision_validated(client: AsyncClient):
    sender_id, _ = await register(client, "0241234567")
    resp = await client.post("/api/transfers", json={
        "user_id": sender_id,
        "to_phone_number": "0551234567",
        "amount": "10.005",
        "pin": TEST_PIN,
    })
    assert resp.status_code == 422

@pytest.mark.asyncio
async def test_withdrawal_and_banks(client: AsyncClient):
    user_id, account_id = await register(client, "0241234567")
    resp = await client.post("/api/topups", json={"user_id": user_id, "amount": 100.00, "pin": TEST_PIN})
    await client.post(f"/api/topups/{resp.json()['reference']}/verify")

    resp = await client.get("/api/banks")
    assert resp.json()[0]["code"] == "040"

    resp = await client.post("/api/withdrawals", json={
        "user_id": user_id,
        "amount": 40.00,
        "bank_code": "040",
        "account_number": "1234567890",
        "pin": TEST_PIN,
    })
    assert resp.status_code == 201
    assert resp.json()["type"] == "withdrawal"

    resp = await client.get(f"/api/users/{user_id}/account")
    assert float(resp.json()["balance"]) == 60.00

@pytest.mark.asyncio
async def test_paystack_webhook(client: AsyncClient, gateway):
    user_id, _ = await register(client, "0241234567")
    resp = await client.post("/api/topups", json={"user_id": user_id, "amount": 75.00, "pin": TEST_PIN})
    reference = resp.json()["reference"]

    body, signature = gateway.sign({"event": "charge.success", "data": {"reference": reference}})

    resp = await client.post("/api/webhooks/paystack", content=body, headers={"x-paystack-signature": "bad"})
    assert resp.status_code == 401

    resp = await client.post("/api/webhooks/paystack", content=body, headers={"x-paystack-signature": signature})
    assert resp.status_code == 200

    resp = await client.get(f"/api/users/{user_id}/account")
    assert float(resp.json()["balance"]) == 75.00

@pytest.mark.asyncio
async def test_unknown_receipt(client: AsyncClient):
    resp = await client.get("/api/receipts/VSE0000000000000000")
    assert resp.status_code == 404
