"""
Hintalaskennan testit: pyöristys, kaava, liitokset ja virhepolku.
"""

from datetime import date

import pytest

from pricing import PricingEngine, TaxRateNotFoundError
from schemas import (
    FuelTypeOut,
    LocationOut,
    OperatorWithLocation,
    RackPriceWithFuelType,
    TaxRateWithFuelType,
)

REG_87 = FuelTypeOut(id=1, name="REG 87")
SUP_91 = FuelTypeOut(id=3, name="SUP 91")
TORONTO = LocationOut(id=1, name="Toronto, ON", province_id=7)


def make_operator(id=1, first_name="John", last_name="Doe", email="john@example.com",
                  location=TORONTO, discount=0.1):
    return OperatorWithLocation(
        id=id,
        first_name=first_name,
        last_name=last_name,
        email=email,
        location_id=location.id,
        discount=discount,
        location=location,
    )


def make_rack_price(id, fuel_type, base_price, location_id=1):
    return RackPriceWithFuelType(
        id=id,
        date=date(2023, 1, 1),
        location_id=location_id,
        fuel_type_id=fuel_type.id,
        base_price=base_price,
        fuel_type=fuel_type,
    )


def make_tax_rate(id, fuel_type, province_id=7, carbon_tax=0.0884,
                  provincial_road_tax=0.147, federal_excise_tax=0.1):
    return TaxRateWithFuelType(
        id=id,
        province_id=province_id,
        fuel_type_id=fuel_type.id,
        carbon_tax=carbon_tax,
        provincial_road_tax=provincial_road_tax,
        federal_excise_tax=federal_excise_tax,
        fuel_type=fuel_type,
    )


@pytest.fixture
def rack_prices():
    return [make_rack_price(1, REG_87, 1.0), make_rack_price(2, SUP_91, 1.2)]


@pytest.fixture
def tax_rates():
    return [make_tax_rate(1, REG_87), make_tax_rate(2, SUP_91)]


class TestRoundToFourDecimals:
    @pytest.mark.parametrize("value, expected", [
        (1.12345, 1.1235),
        (1.12344, 1.1234),
        (0.12345, 0.1235),
        (100.00005, 100.0001),
    ])
    def test_rounds_half_up(self, value, expected):
        assert PricingEngine.round_to_four_decimals(value) == expected

    def test_negative_rounds_away_from_zero(self):
        assert PricingEngine.round_to_four_decimals(-1.12345) == -1.1235

    @pytest.mark.parametrize("value", [0.0, 1.0, 1.23456789, 0.00004999, 42.99995, -3.14159265])
    def test_idempotent(self, value):
        once = PricingEngine.round_to_four_decimals(value)
        assert PricingEngine.round_to_four_decimals(once) == once


class TestCalculatePricesForOperators:
    def test_reference_example(self, rack_prices, tax_rates):
        results = PricingEngine.calculate_prices_for_operators([make_operator()], rack_prices, tax_rates)

        assert len(results) == 1
        result = results[0]
        assert result.operator_id == 1
        assert result.operator_name == "John Doe"
        assert result.operator_email == "john@example.com"
        assert result.location == "Toronto, ON"
        assert len(result.prices) == 2

        reg87, sup91 = result.prices
        assert reg87.fuel_type_name == "REG 87"
        assert reg87.base_price == 1.0
        assert reg87.carbon_tax == 0.0884
        assert reg87.provincial_road_tax == 0.147
        assert reg87.federal_excise_tax == 0.1
        assert reg87.discount == 0.1
        assert reg87.final_price == 1.2354

        assert sup91.fuel_type_name == "SUP 91"
        assert sup91.base_price == 1.2
        assert sup91.final_price == 1.4354

    def test_final_price_matches_formula(self, tax_rates):
        rack_prices = [make_rack_price(1, REG_87, 1.37777), make_rack_price(2, SUP_91, 1.50001)]
        operator = make_operator(discount=0.0325)

        [result] = PricingEngine.calculate_prices_for_operators([operator], rack_prices, tax_rates)

        for line in result.prices:
            expected = PricingEngine.round_to_four_decimals(
                line.base_price + line.carbon_tax + line.provincial_road_tax
                + line.federal_excise_tax - line.discount
            )
            assert line.final_price == expected

    def test_preserves_rack_price_order(self, tax_rates):
        rack_prices = [make_rack_price(2, SUP_91, 1.2), make_rack_price(1, REG_87, 1.0)]

        [result] = PricingEngine.calculate_prices_for_operators([make_operator()], rack_prices, tax_rates)

        assert [p.fuel_type_name for p in result.prices] == ["SUP 91", "REG 87"]

    def test_operator_without_rack_prices_gets_empty_result(self, rack_prices, tax_rates):
        ottawa = LocationOut(id=9, name="Ottawa, ON", province_id=7)
        operators = [make_operator(), make_operator(id=2, first_name="Jane", location=ottawa)]

        results = PricingEngine.calculate_prices_for_operators(operators, rack_prices, tax_rates)

        assert len(results) == 2
        assert results[1].operator_id == 2
        assert results[1].location == "Ottawa, ON"
        assert results[1].prices == []

    def test_no_operators_gives_no_results(self, rack_prices, tax_rates):
        assert PricingEngine.calculate_prices_for_operators([], rack_prices, tax_rates) == []

    def test_missing_tax_rate_aborts_batch(self, rack_prices):
        tax_rates = [make_tax_rate(1, REG_87, province_id=8)]

        with pytest.raises(TaxRateNotFoundError, match="Tax rate not found") as exc_info:
            PricingEngine.calculate_prices_for_operators([make_operator()], rack_prices, tax_rates)

        assert exc_info.value.fuel_type_name == "REG 87"
        assert exc_info.value.province_id == 7
        assert str(exc_info.value) == "Tax rate not found for fuel type REG 87 in province ID 7"

    def test_missing_tax_rate_for_one_operator_fails_everyone(self, rack_prices, tax_rates):
        montreal = LocationOut(id=2, name="Montreal, QC", province_id=8)
        operators = [
            make_operator(),
            make_operator(id=2, location=montreal),
        ]
        rack_prices = rack_prices + [make_rack_price(3, REG_87, 1.1, location_id=2)]

        with pytest.raises(TaxRateNotFoundError):
            PricingEngine.calculate_prices_for_operators(operators, rack_prices, tax_rates)

    def test_changing_tax_province_breaks_lookup(self, rack_prices, tax_rates):
        moved = [tax_rates[0].model_copy(update={"province_id": 8}), tax_rates[1]]

        with pytest.raises(TaxRateNotFoundError, match="REG 87"):
            PricingEngine.calculate_prices_for_operators([make_operator()], rack_prices, moved)

    def test_does_not_mutate_inputs(self, rack_prices, tax_rates):
        operators = [make_operator()]
        before = (
            [o.model_dump() for o in operators],
            [r.model_dump() for r in rack_prices],
            [t.model_dump() for t in tax_rates],
        )

        PricingEngine.calculate_prices_for_operators(operators, rack_prices, tax_rates)

        after = (
            [o.model_dump() for o in operators],
            [r.model_dump() for r in rack_prices],
            [t.model_dump() for t in tax_rates],
        )
        assert before == after

    def test_result_serializes_with_camel_case_keys(self, rack_prices, tax_rates):
        [result] = PricingEngine.calculate_prices_for_operators([make_operator()], rack_prices, tax_rates)

        data = result.model_dump(by_alias=True)
        assert data["operatorName"] == "John Doe"
        assert data["prices"][0]["finalPrice"] == 1.2354
        assert data["prices"][0]["fuelTypeName"] == "REG 87"
