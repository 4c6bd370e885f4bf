"""
Unit tests for pricing service — surge computation and fare calculation.
"""
import pytest
from decimal import Decimal

from conftest import make_driver, make_ride, make_rider
from miniola.exceptions import InvalidFareInput, ValidationFailure
from miniola.services.pricing import (
    calculate_eta_minutes,
    calculate_fare,
    calculate_surge_multiplier,
    current_surge,
    estimate_minutes,
    haversine_km,
)


class TestCalculateFare:
    def test_mini_no_surge(self):
        fare = calculate_fare("mini", 10.0, 20)
        # 50 + 10*12 + 20*2 = 210
        assert fare.base_fare == Decimal("50.00")
        assert fare.distance_fare == Decimal("120.00")
        assert fare.time_fare == Decimal("40.00")
        assert fare.surge_amount == Decimal("0.00")
        assert fare.estimated_fare == Decimal("210.00")

    def test_mini_with_surge(self):
        fare = calculate_fare("mini", 10.0, 20, surge_multiplier=1.5)
        # 210 * 1.5 = 315, surge portion 105
        assert fare.surge_amount == Decimal("105.00")
        assert fare.estimated_fare == Decimal("315.00")

    def test_group_discount_applies_after_surge(self):
        fare = calculate_fare("mini", 10.0, 20, surge_multiplier=1.5, is_group_ride=True)
        # 315 - 20% = 252
        assert fare.group_discount == Decimal("63.00")
        assert fare.estimated_fare == Decimal("252.00")

    def test_sedan_no_surge(self):
        # 80 + 10*12 + 20*2 = 240
        assert calculate_fare("sedan", 10.0, 20).estimated_fare == Decimal("240.00")

    def test_group_ride_no_surge(self):
        fare = calculate_fare("mini", 10.0, 20, is_group_ride=True)
        assert fare.group_discount == Decimal("42.00")
        assert fare.estimated_fare == Decimal("168.00")

    @pytest.mark.parametrize(
        "ride_type,expected",
        [("bike", "30.00"), ("mini", "50.00"), ("sedan", "80.00"), ("suv", "120.00")],
    )
    def test_zero_distance_is_base_fare(self, ride_type, expected):
        fare = calculate_fare(ride_type, 0.0, 0)
        assert fare.estimated_fare == Decimal(expected)

    def test_fare_rounds_half_up_to_paise(self):
        fare = calculate_fare("bike", 1.2345, 0)
        # 30 + 14.814 = 44.814
        assert fare.estimated_fare == Decimal("44.81")

    def test_unknown_ride_type_rejected(self):
        with pytest.raises(InvalidFareInput):
            calculate_fare("helicopter", 10.0, 20)

    def test_negative_distance_rejected(self):
        with pytest.raises(InvalidFareInput):
            calculate_fare("mini", -1.0, 20)

    def test_negative_time_rejected(self):
        with pytest.raises(InvalidFareInput):
            calculate_fare("mini", 1.0, -5)

    def test_surge_below_one_rejected(self):
        with pytest.raises(InvalidFareInput):
            calculate_fare("mini", 10.0, 20, surge_multiplier=0.5)

    def test_invalid_fare_input_is_a_validation_failure(self):
        assert issubclass(InvalidFareInput, ValidationFailure)
        assert InvalidFareInput.status_code == 400

    def test_surged_group_fare_reconciles(self):
        fare = calculate_fare("bike", 0.14, 0, surge_multiplier=1.3, is_group_ride=True)
        # 30 + 1.68 = 31.68; surge 9.50 -> 41.18; discount 8.24
        assert fare.surge_amount == Decimal("9.50")
        assert fare.group_discount == Decimal("8.24")
        assert fare.estimated_fare == Decimal("32.94")

    @pytest.mark.parametrize("ride_type", ["bike", "mini", "sedan", "suv"])
    @pytest.mark.parametrize("surge", [1.0, 1.3, 1.5, 1.8, 2.0])
    @pytest.mark.parametrize("is_group_ride", [False, True])
    def test_components_add_up_to_estimated_fare(self, ride_type, surge, is_group_ride):
        for distance_km in (0.0, 0.14, 0.37, 1.2345, 7.77, 13.09):
            for minutes in (0, 1, 7, 23, 39):
                fare = calculate_fare(ride_type, distance_km, minutes, surge, is_group_ride)
                total = (
                    fare.base_fare + fare.distance_fare + fare.time_fare
                    + fare.surge_amount - fare.group_discount
                )
                assert total == fare.estimated_fare, (distance_km, minutes)
                assert fare.estimated_fare == fare.estimated_fare.quantize(Decimal("0.01"))


class TestSurgeMultiplier:
    @pytest.mark.parametrize(
        "active,available,expected",
        [
            (0, 5, 1.0),
            (5, 5, 1.0),
            (3, 2, 1.3),
            (2, 1, 1.5),
            (5, 2, 1.8),
            (3, 1, 1.8),
            (4, 1, 2.0),
        ],
    )
    def test_ratio_steps(self, active, available, expected):
        assert calculate_surge_multiplier(active, available) == expected

    def test_no_drivers_means_maximum_surge(self):
        assert calculate_surge_multiplier(0, 0) == 2.0
        assert calculate_surge_multiplier(10, 0) == 2.0


class TestDistanceAndTime:
    def test_same_point_is_zero(self):
        assert haversine_km(28.6315, 77.2167, 28.6315, 77.2167) == 0.0

    def test_delhi_to_noida(self):
        distance = haversine_km(28.6315, 77.2167, 28.5355, 77.3910)
        assert 18 < distance < 22
        assert distance == round(distance, 2)

    def test_estimate_minutes_at_average_speed(self):
        assert estimate_minutes(15) == 30
        assert estimate_minutes(0) == 0

    def test_eta_rounds_up(self):
        assert calculate_eta_minutes(1.0) == 2
        assert calculate_eta_minutes(0.1) == 1


@pytest.mark.asyncio
class TestCurrentSurge:
    async def test_idle_platform_has_no_surge(self, db):
        await make_driver(db)
        await make_driver(db)
        assert await current_surge(db) == 1.0

    async def test_demand_above_supply_surges(self, db):
        rider = await make_rider(db)
        await make_driver(db)
        await make_ride(db, rider)
        await make_ride(db, rider)
        # 2 active rides / 1 available driver
        assert await current_surge(db) == 1.5

    async def test_offline_and_unapproved_drivers_do_not_count(self, db):
        await make_driver(db, is_available=False)
        await make_driver(db, kyc_status="pending")
        assert await current_surge(db) == 2.0
