from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from voucher_api.models.voucher import Voucher
from voucher_api.services.vouchers import RedemptionPersistenceError, SqlRedemptionLedger


ADMIN = {"X-Session-User": "admin-1", "X-Session-Role": "ADMIN"}
CUSTOMER = {"X-Session-User": "user-1", "X-Session-Role": "USER"}

VOUCHER_PAYLOAD = {
    "code": "autumn30",
    "name": "Autumn thirty",
    "discount_kind": "PERCENT",
    "discount_value": 30,
    "max_discount_amount": 30000,
    "min_order_amount": 50000,
    "max_redemptions": 1,
}


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_voucher_lifecycle_and_redemption(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        create_resp = await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)
        assert create_resp.status_code == 201
        created = create_resp.json()
        assert created["code"] == "AUTUMN30"
        assert created["currency"] == "IDR"
        assert created["created_by"] == "admin-1"

        detail_resp = await client.get("/api/v1/vouchers/autumn30")
        assert detail_resp.status_code == 200
        detail = detail_resp.json()
        assert detail["is_available"] is True
        assert detail["remaining_redemptions"] == 1

        redeem_resp = await client.post(
            "/api/v1/vouchers/AUTUMN30/redeem",
            json={"order_amount": 150000, "order_id": "order-9"},
            headers=CUSTOMER,
        )
        assert redeem_resp.status_code == 200
        receipt = redeem_resp.json()
        assert receipt["discount_amount"] == 30000
        assert receipt["final_amount"] == 120000
        assert receipt["voucher_name"] == "Autumn thirty"
        assert receipt["order_id"] == "order-9"

        exhausted_resp = await client.post(
            "/api/v1/vouchers/AUTUMN30/redeem",
            json={"order_amount": 150000},
            headers={"X-Session-User": "user-2"},
        )
        assert exhausted_resp.status_code == 400
        assert exhausted_resp.json()["detail"]["error"] == "exhausted"

        list_resp = await client.get("/api/v1/vouchers")
        assert list_resp.status_code == 200
        listing = list_resp.json()
        assert listing["count"] == 1
        assert listing["data"][0]["redeemed_count"] == 1


@pytest.mark.asyncio
async def test_redeem_error_mapping(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await client.post("/api/v1/vouchers", json={**VOUCHER_PAYLOAD, "max_redemptions": 5}, headers=ADMIN)

        missing = await client.post("/api/v1/vouchers/NOPE/redeem", json={"order_amount": 1000}, headers=CUSTOMER)
        assert missing.status_code == 404
        assert missing.json()["detail"]["error"] == "not_found"

        below = await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 40000}, headers=CUSTOMER)
        assert below.status_code == 400
        body = below.json()["detail"]
        assert body["error"] == "below_minimum"
        assert body["min_order_amount"] == 50000
        assert body["message"]

        first = await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 60000}, headers=CUSTOMER)
        assert first.status_code == 200
        repeat = await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 60000}, headers=CUSTOMER)
        assert repeat.status_code == 400
        assert repeat.json()["detail"]["error"] == "already_redeemed"
        assert repeat.json()["detail"]["redeemed_at"] is not None


@pytest.mark.asyncio
async def test_redeem_persistence_failure_is_500(app_with_db, monkeypatch) -> None:
    app, session_factory = app_with_db

    async def broken_insert(self, record):
        raise RuntimeError("ledger offline")

    monkeypatch.setattr(SqlRedemptionLedger, "insert", broken_insert)

    async with _client(app) as client:
        await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)
        response = await client.post(
            "/api/v1/vouchers/AUTUMN30/redeem",
            json={"order_amount": 150000},
            headers=CUSTOMER,
        )

    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["error"] == RedemptionPersistenceError.code
    assert detail["compensation_failed"] is False

    async with session_factory() as session:
        voucher = (await session.execute(Voucher.__table__.select())).one()
        assert voucher.redeemed_count == 0


@pytest.mark.asyncio
async def test_redeem_rejects_invalid_amounts(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        for amount in (0, -5, 12.5, "abc"):
            response = await client.post(
                "/api/v1/vouchers/AUTUMN30/redeem",
                json={"order_amount": amount},
                headers=CUSTOMER,
            )
            assert response.status_code == 422


@pytest.mark.asyncio
async def test_identity_headers_are_enforced(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        anonymous = await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD)
        assert anonymous.status_code == 401

        customer_create = await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=CUSTOMER)
        assert customer_create.status_code == 403

        admin_redeem = await client.post(
            "/api/v1/vouchers/AUTUMN30/redeem",
            json={"order_amount": 1000},
            headers=ADMIN,
        )
        assert admin_redeem.status_code == 403

        public_listing = await client.get("/api/v1/vouchers")
        assert public_listing.status_code == 200

        invalid_role = await client.post(
            "/api/v1/vouchers",
            json=VOUCHER_PAYLOAD,
            headers={"X-Session-User": "someone", "X-Session-Role": "ROOT"},
        )
        assert invalid_role.status_code == 400


@pytest.mark.asyncio
async def test_create_validation_and_duplicates(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        too_generous = await client.post(
            "/api/v1/vouchers",
            json={**VOUCHER_PAYLOAD, "discount_value": 150},
            headers=ADMIN,
        )
        assert too_generous.status_code == 400
        assert too_generous.json()["detail"]["error"] == "validation_error"

        first = await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)
        assert first.status_code == 201
        duplicate = await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["error"] == "duplicate_code"


@pytest.mark.asyncio
async def test_update_and_delete_voucher(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        created = (await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)).json()
        voucher_id = created["id"]

        update_resp = await client.put(
            f"/api/v1/vouchers/{voucher_id}",
            json={"name": "Autumn special", "max_redemptions": 4},
            headers=ADMIN,
        )
        assert update_resp.status_code == 200
        assert update_resp.json()["max_redemptions"] == 4
        assert update_resp.json()["name"] == "Autumn special"

        null_name = await client.put(f"/api/v1/vouchers/{voucher_id}", json={"name": None}, headers=ADMIN)
        assert null_name.status_code == 422

        missing = await client.put(f"/api/v1/vouchers/{uuid4()}", json={"name": "Nobody here"}, headers=ADMIN)
        assert missing.status_code == 404

        delete_resp = await client.delete(f"/api/v1/vouchers/{voucher_id}", headers=ADMIN)
        assert delete_resp.status_code == 200
        assert delete_resp.json() == {"id": voucher_id, "code": "AUTUMN30", "deleted": True}

        gone = await client.get("/api/v1/vouchers/AUTUMN30")
        assert gone.status_code == 404


@pytest.mark.asyncio
async def test_delete_redeemed_voucher_is_refused(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        created = (await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)).json()
        await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 150000}, headers=CUSTOMER)

        shrink = await client.put(f"/api/v1/vouchers/{created['id']}", json={"max_redemptions": 1}, headers=ADMIN)
        assert shrink.status_code == 200

        delete_resp = await client.delete(f"/api/v1/vouchers/{created['id']}", headers=ADMIN)
        assert delete_resp.status_code == 400
        assert delete_resp.json()["detail"]["error"] == "voucher_in_use"


@pytest.mark.asyncio
async def test_cancel_and_refund_endpoints(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        await client.post("/api/v1/vouchers", json=VOUCHER_PAYLOAD, headers=ADMIN)
        receipt = (
            await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 150000}, headers=CUSTOMER)
        ).json()
        redemption_id = receipt["redemption_id"]

        forbidden = await client.post(f"/api/v1/vouchers/redemptions/{redemption_id}/cancel", json={}, headers=CUSTOMER)
        assert forbidden.status_code == 403

        cancel_resp = await client.post(
            f"/api/v1/vouchers/redemptions/{redemption_id}/cancel",
            json={"reason": "order voided"},
            headers=ADMIN,
        )
        assert cancel_resp.status_code == 200
        cancelled = cancel_resp.json()
        assert cancelled["status"] == "CANCELLED"
        assert cancelled["cancellation_reason"] == "order voided"

        detail = (await client.get("/api/v1/vouchers/AUTUMN30")).json()
        assert detail["redeemed_count"] == 0

        second = await client.post("/api/v1/vouchers/AUTUMN30/redeem", json={"order_amount": 150000}, headers=CUSTOMER)
        assert second.status_code == 200

        refund_resp = await client.post(
            f"/api/v1/vouchers/redemptions/{second.json()['redemption_id']}/refund",
            json={},
            headers=ADMIN,
        )
        assert refund_resp.status_code == 200
        assert refund_resp.json()["status"] == "REFUNDED"

        unknown = await client.post(f"/api/v1/vouchers/redemptions/{uuid4()}/refund", json={}, headers=ADMIN)
        assert unknown.status_code == 404
        assert unknown.json()["detail"]["error"] == "redemption_not_found"
