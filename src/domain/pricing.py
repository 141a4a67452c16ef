"""
Fare Allocation Engine  (distance-weighted split)
=================================================

Formula
-------
For a ride whose passengers travel solo distances d_1 .. d_n (D = sum d_i):

    Total       = D x Pooling_Efficiency x Rate_Per_KM + Base_Fare
    Share_i     = Total x d_i / D
    Solo_i      = d_i x Rate_Per_KM + Base_Fare
    Share_i     = Solo_i x Solo_Discount      if Share_i > Solo_i

* **Pooling_Efficiency** (0.7) models a shared driver covering less ground
  than the sum of the solo trips.
* **Solo_Discount** (0.95) guarantees at least 5 % off the solo price
  (individual rationality).
* A passenger without usable coordinates gets distance 0 and takes no part
  in the proportional split.  D == 0 leaves every fare at 0.

Values are kept at full precision; rounding to the currency's minor unit
happens only when fares are presented.

The engine is a pure function of (passengers, base fare): running it twice
yields bit-identical shares, so a save can be retried safely.

Complexity: O(n) per allocation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .distance import distance_km
from .entities import Passenger
from .errors import InvalidCoordinate


RATE_PER_KM = 15.0
POOLING_EFFICIENCY = 0.7
SOLO_DISCOUNT = 0.95


@dataclass(frozen=True)
class PassengerFare:
    user_id: int
    distance_km: float
    fare_share: float
    solo_price: float


@dataclass(frozen=True)
class FareAllocation:
    current_total: float
    total_solo_distance: float
    fares: tuple[PassengerFare, ...]

    def fare_for(self, user_id: int) -> Optional[float]:
        for fare in self.fares:
            if fare.user_id == user_id:
                return fare.fare_share
        return None


class FareAllocationEngine:
    """High-level API used by the ride service."""

    def __init__(
        self,
        rate_per_km: float = RATE_PER_KM,
        pooling_efficiency: float = POOLING_EFFICIENCY,
        solo_discount: float = SOLO_DISCOUNT,
    ):
        self.rate_per_km = rate_per_km
        self.pooling_efficiency = pooling_efficiency
        self.solo_discount = solo_discount

    def solo_price(self, distance: float, base_fare: float) -> float:
        return distance * self.rate_per_km + base_fare

    @staticmethod
    def trip_distance(passenger: Passenger) -> float:
        try:
            return distance_km(passenger.pickup, passenger.drop)
        except InvalidCoordinate:
            return 0.0

    def allocate(
        self, passengers: Sequence[Passenger], base_fare: float
    ) -> FareAllocation:
        distances = [self.trip_distance(p) for p in passengers]
        total_distance = sum(distances)

        if total_distance <= 0:
            return FareAllocation(
                current_total=0.0,
                total_solo_distance=0.0,
                fares=tuple(
                    PassengerFare(p.user_id, 0.0, 0.0, self.solo_price(0.0, base_fare))
                    for p in passengers
                ),
            )

        optimized_distance = total_distance * self.pooling_efficiency
        total_cost = optimized_distance * self.rate_per_km + base_fare

        fares = []
        for passenger, distance in zip(passengers, distances):
            share = total_cost * (distance / total_distance)
            solo = self.solo_price(distance, base_fare)
            if share > solo:
                share = solo * self.solo_discount
            fares.append(PassengerFare(passenger.user_id, distance, share, solo))

        return FareAllocation(
            current_total=total_cost,
            total_solo_distance=total_distance,
            fares=tuple(fares),
        )

    def preview(
        self,
        passengers: Sequence[Passenger],
        candidate: Passenger,
        base_fare: float,
    ) -> FareAllocation:
        """Allocation as it would be if *candidate* joined; nothing is mutated."""
        return self.allocate([*passengers, candidate], base_fare)
