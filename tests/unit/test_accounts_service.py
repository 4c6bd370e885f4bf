"""
Unit tests for registration, login and profile management.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from conftest import PASSWORD, make_driver, make_ride, make_rider
from miniola.exceptions import (
    AuthenticationFailed,
    DuplicateResource,
    InvalidStateTransition,
    ValidationFailure,
)
from miniola.services import accounts, tokens


def _driver_fields(**overrides) -> dict:
    fields = {
        "name": "Ravi Kumar",
        "email": "ravi@example.com",
        "phone": "9811111111",
        "password": PASSWORD,
        "vehicle_type": "sedan",
        "vehicle_number": "dl01ab1234",
        "vehicle_model": "Honda City",
        "license_number": "dl0420110012345",
        "license_expiry": datetime.now(timezone.utc) + timedelta(days=400),
    }
    fields.update(overrides)
    return fields


class TestPasswords:
    def test_hash_round_trip(self):
        hashed = accounts.hash_password("hunter22")
        assert hashed != "hunter22"
        assert accounts.verify_password("hunter22", hashed)
        assert not accounts.verify_password("hunter23", hashed)


@pytest.mark.asyncio
class TestRegistration:
    async def test_rider_gets_starting_wallet(self, db):
        rider = await accounts.register_rider(
            db, name=" Asha ", email="Asha@Example.COM", phone="9000000001", password=PASSWORD
        )

        assert rider.id is not None
        assert rider.name == "Asha"
        assert rider.email == "asha@example.com"
        assert rider.wallet_balance == Decimal("1000.00")
        assert rider.password_hash != PASSWORD

    async def test_duplicate_email_rejected(self, db):
        existing = await make_rider(db)

        with pytest.raises(DuplicateResource) as exc_info:
            await accounts.register_rider(
                db, name="Copy", email=existing.email.upper(), phone="9000000002", password=PASSWORD
            )
        assert exc_info.value.errors == {"fields": ["email"]}

    async def test_duplicate_phone_rejected(self, db):
        existing = await make_rider(db)

        with pytest.raises(DuplicateResource):
            await accounts.register_rider(
                db, name="Copy", email="fresh@example.com", phone=existing.phone, password=PASSWORD
            )

    async def test_driver_registration_normalises_identifiers(self, db):
        driver = await accounts.register_driver(db, **_driver_fields())

        assert driver.vehicle_number == "DL01AB1234"
        assert driver.license_number == "DL0420110012345"
        assert driver.kyc_status == "pending"
        assert driver.is_available is False

    async def test_driver_auto_approved_when_enabled(self, db, monkeypatch):
        monkeypatch.setattr(accounts.settings, "auto_approve_kyc", True)

        driver = await accounts.register_driver(db, **_driver_fields())

        assert driver.kyc_status == "approved"

    async def test_driver_invalid_vehicle_type(self, db):
        with pytest.raises(ValidationFailure):
            await accounts.register_driver(db, **_driver_fields(vehicle_type="truck"))

    async def test_driver_duplicate_vehicle_number(self, db):
        existing = await make_driver(db)

        with pytest.raises(DuplicateResource) as exc_info:
            await accounts.register_driver(db, **_driver_fields(vehicle_number=existing.vehicle_number.lower()))
        assert exc_info.value.errors == {"fields": ["vehicle_number"]}

    async def test_same_email_may_be_rider_and_driver(self, db):
        rider = await make_rider(db)

        driver = await accounts.register_driver(db, **_driver_fields(email=rider.email))

        assert driver.email == rider.email


@pytest.mark.asyncio
class TestLogin:
    async def test_login_by_email(self, db):
        rider = await make_rider(db)

        account, pair = await accounts.login(db, rider.email.upper(), PASSWORD)

        assert account.id == rider.id
        assert pair["token_type"] == "bearer"
        assert pair["access_token"]
        await tokens.verify_refresh_token(db, pair["refresh_token"])

    async def test_login_by_phone(self, db):
        driver = await make_driver(db)

        account, _ = await accounts.login(db, driver.phone, PASSWORD, role="driver")

        assert account.id == driver.id

    async def test_wrong_password(self, db):
        rider = await make_rider(db)
        with pytest.raises(AuthenticationFailed):
            await accounts.login(db, rider.email, "wrong-password")

    async def test_rider_credentials_do_not_log_into_driver_side(self, db):
        rider = await make_rider(db)
        with pytest.raises(AuthenticationFailed):
            await accounts.login(db, rider.email, PASSWORD, role="driver")

    async def test_deactivated_account(self, db):
        rider = await make_rider(db, is_active=False)
        with pytest.raises(AuthenticationFailed):
            await accounts.login(db, rider.email, PASSWORD)

    async def test_unknown_role(self, db):
        with pytest.raises(ValidationFailure):
            await accounts.login(db, "someone@example.com", PASSWORD, role="admin")


@pytest.mark.asyncio
class TestProfile:
    async def test_update_ignores_unknown_fields(self, db):
        rider = await make_rider(db)
        balance = rider.wallet_balance

        await accounts.update_profile(
            db, rider, name="New Name", location_address="Saket", wallet_balance=Decimal("99999")
        )

        assert rider.name == "New Name"
        assert rider.location_address == "Saket"
        assert rider.wallet_balance == balance

    async def test_driver_can_update_vehicle_details(self, db):
        driver = await make_driver(db)

        await accounts.update_profile(db, driver, vehicle_model="Hyundai i20", vehicle_color="Red")

        assert driver.vehicle_model == "Hyundai i20"
        assert driver.vehicle_color == "Red"

    async def test_phone_taken_by_another_rider(self, db):
        rider = await make_rider(db)
        other = await make_rider(db)

        with pytest.raises(DuplicateResource):
            await accounts.update_profile(db, rider, phone=other.phone)

    async def test_change_password_revokes_sessions(self, db):
        rider = await make_rider(db)
        _, pair = await accounts.login(db, rider.email, PASSWORD)

        await accounts.change_password(db, rider, PASSWORD, "brand-new-pass")

        assert accounts.verify_password("brand-new-pass", rider.password_hash)
        with pytest.raises(AuthenticationFailed):
            await tokens.verify_refresh_token(db, pair["refresh_token"])

    async def test_change_password_requires_current(self, db):
        rider = await make_rider(db)
        with pytest.raises(AuthenticationFailed):
            await accounts.change_password(db, rider, "not-it", "brand-new-pass")

    async def test_change_password_must_differ(self, db):
        rider = await make_rider(db)
        with pytest.raises(ValidationFailure):
            await accounts.change_password(db, rider, PASSWORD, PASSWORD)


@pytest.mark.asyncio
class TestDeleteAccount:
    async def test_deleted_email_can_register_again(self, db, redis):
        rider = await make_rider(db)
        _, pair = await accounts.login(db, rider.email, PASSWORD)

        await accounts.delete_account(db, redis, rider)

        assert rider.is_deleted
        assert rider.is_active is False
        with pytest.raises(AuthenticationFailed):
            await tokens.verify_refresh_token(db, pair["refresh_token"])
        with pytest.raises(AuthenticationFailed):
            await accounts.login(db, rider.email, PASSWORD)

        fresh = await accounts.register_rider(
            db, name="Again", email=rider.email, phone=rider.phone, password=PASSWORD
        )
        assert fresh.id != rider.id

    async def test_driver_removed_from_index(self, db, redis):
        driver = await make_driver(db)

        await accounts.delete_account(db, redis, driver)

        assert driver.is_available is False
        redis.zrem.assert_awaited_once_with("drivers:geo:mini", driver.id)

    async def test_rider_with_active_ride_cannot_delete(self, db, redis):
        rider = await make_rider(db)
        await make_ride(db, rider)

        with pytest.raises(InvalidStateTransition):
            await accounts.delete_account(db, redis, rider)
        assert not rider.is_deleted

    async def test_busy_driver_cannot_delete(self, db, redis):
        rider = await make_rider(db)
        driver = await make_driver(db)
        await make_ride(db, rider, driver)

        with pytest.raises(InvalidStateTransition):
            await accounts.delete_account(db, redis, driver)
