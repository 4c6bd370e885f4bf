"""
Integration tests for the full ride lifecycle.
Uses pytest-asyncio + HTTPX AsyncClient against the FastAPI app, with
SQLite standing in for Postgres and a mocked Redis GEO index.
"""
import pytest

from conftest import DROPOFF, PICKUP, auth_headers, make_driver, make_ride, make_rider

RIDE_REQUEST = {
    "pickup_lat": PICKUP[0],
    "pickup_lng": PICKUP[1],
    "pickup_address": "Connaught Place",
    "dropoff_lat": DROPOFF[0],
    "dropoff_lng": DROPOFF[1],
    "dropoff_address": "Noida Sector 18",
    "ride_type": "mini",
}


async def _register_rider(client, email="asha@example.com", phone="9123456780") -> dict:
    resp = await client.post("/v1/auth/register", json={
        "name": "Asha Verma",
        "email": email,
        "phone": phone,
        "password": "secret123",
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _bearer(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


@pytest.mark.asyncio
class TestApiBasics:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_ride_missing_auth(self, client):
        resp = await client.post("/v1/rides", json=RIDE_REQUEST)
        assert resp.status_code == 401
        assert resp.json()["kind"] == "Unauthorized"

    async def test_garbage_token_rejected(self, client):
        resp = await client.get("/v1/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    async def test_create_ride_invalid_lat(self, client, db):
        rider = await make_rider(db)
        resp = await client.post(
            "/v1/rides",
            headers=auth_headers(rider),
            json={**RIDE_REQUEST, "pickup_lat": 999},
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["kind"] == "ValidationFailure"
        assert body["errors"][0]["loc"][-1] == "pickup_lat"

    async def test_fare_estimate(self, client, db):
        rider = await make_rider(db)
        resp = await client.post("/v1/rides/estimate", headers=auth_headers(rider), json={
            "pickup_lat": PICKUP[0],
            "pickup_lng": PICKUP[1],
            "dropoff_lat": DROPOFF[0],
            "dropoff_lng": DROPOFF[1],
            "ride_type": "sedan",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["ride_type"] == "sedan"
        assert body["base_fare"] == 80.0
        assert body["estimated_fare"] > body["base_fare"]

    async def test_rider_cannot_use_driver_endpoints(self, client, db):
        rider = await make_rider(db)
        resp = await client.put("/v1/drivers/availability", headers=auth_headers(rider), json={"is_available": True})
        assert resp.status_code == 403
        assert resp.json()["kind"] == "Unauthorized"


@pytest.mark.asyncio
class TestAuthFlow:
    async def test_register_then_login_by_phone(self, client):
        registered = await _register_rider(client)
        assert registered["account"]["role"] == "rider"
        assert registered["account"]["wallet_balance"] == 1000.0

        resp = await client.post("/v1/auth/login", json={"phone": "9123456780", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.json()["account"]["id"] == registered["account"]["id"]

    async def test_duplicate_registration(self, client):
        await _register_rider(client)
        resp = await client.post("/v1/auth/register", json={
            "name": "Someone Else",
            "email": "asha@example.com",
            "phone": "9000000009",
            "password": "secret123",
        })
        assert resp.status_code == 409
        assert resp.json()["kind"] == "DuplicateResource"

    async def test_bad_password(self, client):
        await _register_rider(client)
        resp = await client.post("/v1/auth/login", json={"email": "asha@example.com", "password": "nope"})
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    async def test_refresh_rotation_and_reuse(self, client):
        first = await _register_rider(client)

        resp = await client.post("/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]

        # replaying the rotated token kills the newer one too
        resp = await client.post("/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 401
        resp = await client.post("/v1/auth/refresh", json={"refresh_token": second["refresh_token"]})
        assert resp.status_code == 401

    async def test_logout(self, client):
        tokens = await _register_rider(client)

        resp = await client.post("/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200

        resp = await client.post("/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401

    async def test_profile_update(self, client):
        tokens = await _register_rider(client)

        resp = await client.put("/v1/auth/profile", headers=_bearer(tokens), json={"name": "Asha V"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Asha V"

        resp = await client.get("/v1/auth/profile", headers=_bearer(tokens))
        assert resp.json()["name"] == "Asha V"

    async def test_deleted_account_token_stops_working(self, client):
        tokens = await _register_rider(client)

        resp = await client.delete("/v1/auth/account", headers=_bearer(tokens))
        assert resp.status_code == 200

        resp = await client.get("/v1/auth/profile", headers=_bearer(tokens))
        assert resp.status_code == 401


@pytest.mark.asyncio
class TestRideLifecycle:
    async def test_full_ride(self, client, db, redis):
        driver = await make_driver(db, is_available=False)
        driver_headers = auth_headers(driver)
        rider_tokens = await _register_rider(client)
        rider_headers = _bearer(rider_tokens)

        # driver comes online
        resp = await client.put("/v1/drivers/availability", headers=driver_headers, json={
            "is_available": True, "lat": PICKUP[0], "lng": PICKUP[1],
        })
        assert resp.status_code == 200
        assert resp.json()["is_available"] is True
        redis.geoadd.assert_awaited()
        redis.geosearch.return_value = [driver.id]

        # rider requests; nearest driver is assigned straight away
        resp = await client.post("/v1/rides", headers=rider_headers, json=RIDE_REQUEST)
        assert resp.status_code == 201, resp.text
        created = resp.json()
        ride_id = created["ride"]["id"]
        otp = created["ride"]["otp"]
        assert created["ride"]["status"] == "accepted"
        assert created["driver"]["id"] == driver.id
        assert created["driver"]["eta_minutes"] is not None
        assert created["nearby_drivers"] == 1
        assert len(otp) == 4

        # the driver never sees the OTP
        resp = await client.get("/v1/drivers/rides/active", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == ride_id
        assert resp.json()["otp"] is None

        resp = await client.put(f"/v1/drivers/rides/{ride_id}/arrive", headers=driver_headers)
        assert resp.json()["status"] == "driver-arrived"

        resp = await client.put(f"/v1/drivers/rides/{ride_id}/start", headers=driver_headers, json={"otp": otp})
        assert resp.status_code == 200
        assert resp.json()["status"] == "in-progress"

        resp = await client.put(f"/v1/drivers/rides/{ride_id}/complete", headers=driver_headers, json={})
        assert resp.status_code == 200
        completed = resp.json()
        assert completed["status"] == "completed"
        assert completed["final_fare"] == completed["estimated_fare"]

        resp = await client.post("/v1/payments/process", headers=rider_headers, json={
            "ride_id": ride_id, "method": "wallet",
        })
        assert resp.status_code == 200, resp.text
        payment = resp.json()
        assert payment["status"] == "completed"
        assert payment["amount"] == completed["final_fare"]
        assert payment["platform_fee"] + payment["driver_earnings"] == pytest.approx(payment["amount"])

        resp = await client.get(f"/v1/payments/{ride_id}", headers=driver_headers)
        assert resp.status_code == 200
        receipt = resp.json()
        assert receipt["receipt_number"] == payment["receipt_number"]
        assert receipt["payment"]["method"] == "wallet"

        resp = await client.post(f"/v1/rides/{ride_id}/rate", headers=rider_headers, json={
            "rating": 5, "feedback": "Smooth ride",
        })
        assert resp.status_code == 200
        assert resp.json()["rider_rating"] == 5

        resp = await client.get("/v1/auth/profile", headers=rider_headers)
        assert resp.json()["wallet_balance"] == pytest.approx(1000.0 - payment["amount"])

        resp = await client.get("/v1/drivers/earnings", headers=driver_headers)
        earnings = resp.json()
        assert earnings["total_rides"] == 1
        assert earnings["wallet_balance"] == pytest.approx(payment["driver_earnings"])
        assert [r["id"] for r in earnings["recent_rides"]] == [ride_id]

    async def test_no_drivers_available(self, client, db):
        rider = await make_rider(db)
        headers = auth_headers(rider)

        resp = await client.post("/v1/rides", headers=headers, json=RIDE_REQUEST)

        assert resp.status_code == 404
        body = resp.json()
        assert body["kind"] == "NoDriversAvailable"
        ride_id = body["errors"]["ride_id"]

        resp = await client.get(f"/v1/rides/{ride_id}", headers=headers)
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["cancelled_by"] == "system"

        resp = await client.get("/v1/rides/active", headers=headers)
        assert resp.status_code == 404

    async def test_wrong_otp(self, client, db):
        rider = await make_rider(db)
        driver = await make_driver(db)
        ride = await make_ride(db, rider, driver)

        resp = await client.put(
            f"/v1/drivers/rides/{ride.id}/start", headers=auth_headers(driver), json={"otp": "0000"}
        )

        assert resp.status_code == 400
        assert resp.json()["kind"] == "OTPMismatch"

    async def test_second_request_while_active(self, client, db):
        rider = await make_rider(db)
        await make_ride(db, rider)

        resp = await client.post("/v1/rides", headers=auth_headers(rider), json=RIDE_REQUEST)

        assert resp.status_code == 409
        assert resp.json()["kind"] == "InvalidStateTransition"

    async def test_rider_cancels(self, client, db):
        rider = await make_rider(db)
        driver = await make_driver(db)
        ride = await make_ride(db, rider, driver)

        resp = await client.put(
            f"/v1/rides/{ride.id}/cancel", headers=auth_headers(rider), json={"reason": "Changed plans"}
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert resp.json()["cancelled_by"] == "rider"

        resp = await client.get("/v1/rides/history", headers=auth_headers(rider), params={"status": "cancelled"})
        assert resp.json()["total"] == 1

    async def test_paying_twice_is_rejected(self, client, db):
        rider = await make_rider(db)
        driver = await make_driver(db)
        ride = await make_ride(db, rider, driver, status="completed", final_fare=250)
        headers = auth_headers(rider)

        first = await client.post("/v1/payments/process", headers=headers, json={"ride_id": ride.id, "method": "upi"})
        second = await client.post("/v1/payments/process", headers=headers, json={"ride_id": ride.id, "method": "upi"})

        assert first.status_code == 200
        assert second.status_code == 409

    async def test_insufficient_balance(self, client, db):
        rider = await make_rider(db, wallet_balance=10)
        driver = await make_driver(db)
        ride = await make_ride(db, rider, driver, status="completed", final_fare=250)

        resp = await client.post(
            "/v1/payments/process", headers=auth_headers(rider), json={"ride_id": ride.id, "method": "wallet"}
        )

        assert resp.status_code == 402
        assert resp.json()["kind"] == "InsufficientBalance"
