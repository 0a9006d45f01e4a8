# -*- coding: utf-8 -*-
# Business Logic: Fuel Pricing Rules
# Copyright (c) 2025 Jan Sarivuo

"""
Keskitetty hinnoittelulogiikka (Business Logic Layer).

Tämä moduuli laskee operaattorikohtaiset polttoainehinnat rack-hinnoista,
maakuntakohtaisista veroista ja operaattorin alennuksesta.
Eriyttämällä logiikan tänne, varmistamme että:
1. Sähköpostit, rajapinnat ja skriptit laskevat hinnat samalla kaavalla.
2. Kaavan muutokset tarvitsee tehdä vain yhteen paikkaan.

Moduuli ei tee I/O:ta eikä muokkaa syötteitään.
"""

import math
from typing import Dict, List, Sequence, Tuple

from schemas import (
    OperatorPriceResult,
    OperatorWithLocation,
    PricedLine,
    RackPriceWithFuelType,
    TaxRateWithFuelType,
)


class TaxRateNotFoundError(LookupError):
    """Verokanta puuttuu (maakunta, polttoainetyyppi) -parilta."""

    def __init__(self, fuel_type_name: str, province_id: int):
        self.fuel_type_name = fuel_type_name
        self.province_id = province_id
        super().__init__(
            f"Tax rate not found for fuel type {fuel_type_name} in province ID {province_id}"
        )


class PricingEngine:
    # Hinnat pyöristetään neljään desimaaliin
    PRICE_SCALE = 10_000

    @staticmethod
    def round_to_four_decimals(value: float) -> float:
        """
        Pyöristää neljään desimaaliin: skaalaus, pyöristys puolikkaasta
        poispäin nollasta ja takaisinskaalaus.

        Pythonin round() käyttää pankkiirin pyöristystä, joten sitä ei
        käytetä tässä. Liukulukuvirhe hyväksytään sellaisenaan.
        """
        scaled = math.floor(abs(value) * PricingEngine.PRICE_SCALE + 0.5)
        return math.copysign(scaled, value) / PricingEngine.PRICE_SCALE

    @staticmethod
    def calculate_final_price(
        base_price: float,
        carbon_tax: float,
        provincial_road_tax: float,
        federal_excise_tax: float,
        discount: float,
    ) -> float:
        # (Rack + hiilivero + maakuntavero + valmistevero) - alennus
        return PricingEngine.round_to_four_decimals(
            base_price + carbon_tax + provincial_road_tax + federal_excise_tax - discount
        )

    @staticmethod
    def calculate_prices_for_operators(
        operators: Sequence[OperatorWithLocation],
        rack_prices: Sequence[RackPriceWithFuelType],
        tax_rates: Sequence[TaxRateWithFuelType],
    ) -> List[OperatorPriceResult]:
        """
        Laskee jokaiselle operaattorille hinnat sen toimipisteen rack-hinnoista.

        - Jokaiselle operaattorille palautetaan tulos, vaikka hintoja ei löytyisi.
        - Hintarivit ovat samassa järjestyksessä kuin rack_prices-syötteessä.
        - Jos yhdellekin riville puuttuu verokanta, koko erä keskeytetään
          (TaxRateNotFoundError), eikä osittaisia tuloksia palauteta.
        """
        # Hakutaulu verokannoille: (maakunta, polttoainetyyppi) -> TaxRate.
        # Ensimmäinen osuma voittaa, kuten lineaarisessa haussa.
        tax_lookup: Dict[Tuple[int, int], TaxRateWithFuelType] = {}
        for tax_rate in tax_rates:
            tax_lookup.setdefault((tax_rate.province_id, tax_rate.fuel_type_id), tax_rate)

        results = []
        for operator in operators:
            province_id = operator.location.province_id
            prices = []

            for rack_price in rack_prices:
                if rack_price.location_id != operator.location_id:
                    continue

                tax_rate = tax_lookup.get((province_id, rack_price.fuel_type_id))
                if tax_rate is None:
                    raise TaxRateNotFoundError(rack_price.fuel_type.name, province_id)

                prices.append(PricedLine(
                    fuel_type_id=rack_price.fuel_type_id,
                    fuel_type_name=rack_price.fuel_type.name,
                    final_price=PricingEngine.calculate_final_price(
                        rack_price.base_price,
                        tax_rate.carbon_tax,
                        tax_rate.provincial_road_tax,
                        tax_rate.federal_excise_tax,
                        operator.discount,
                    ),
                    base_price=rack_price.base_price,
                    carbon_tax=tax_rate.carbon_tax,
                    provincial_road_tax=tax_rate.provincial_road_tax,
                    federal_excise_tax=tax_rate.federal_excise_tax,
                    discount=operator.discount,
                ))

            results.append(OperatorPriceResult(
                operator_id=operator.id,
                operator_name=f"{operator.first_name} {operator.last_name}",
                operator_email=operator.email,
                location=operator.location.name,
                prices=prices,
            ))

        return results
