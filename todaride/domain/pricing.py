"""
Fare Engine  (Strategy Pattern)
===============================

Formula
-------
Fare = ceil(Distance x Rate_Per_KM)                 -- regular passengers
Fare = ceil(ceil(Distance x Rate_Per_KM) x (1 - D))  -- senior citizens / PWD

* **Rate_Per_KM** defaults to 15 per km.
* **D** is the statutory senior / PWD discount (20 %).

Fares are whole currency units; every step rounds up.

Complexity: O(1) per fare calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

from .enums import PassengerType


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, rate_per_km: float) -> int: ...


class DistanceFare(FareStrategy):
    def calculate(self, distance_km: float, rate_per_km: float) -> int:
        return math.ceil(round(distance_km * rate_per_km, 6))


class DiscountedFare(FareStrategy):
    """Distance fare with a percentage discount, rounded up."""

    def __init__(self, discount: float = 0.20):
        self.discount = discount

    def calculate(self, distance_km: float, rate_per_km: float) -> int:
        base = DistanceFare().calculate(distance_km, rate_per_km)
        return math.ceil(round(base * (1 - self.discount), 6))


# ── Engine facade ─────────────────────────────────────────────────────


class FareEngine:
    """High-level API used by the estimate endpoint."""

    def __init__(self, rate_per_km: float = 15.0, senior_pwd_discount: float = 0.20):
        self.rate_per_km = rate_per_km
        self.senior_pwd_discount = senior_pwd_discount

    def strategy_for(self, passenger_type: PassengerType) -> FareStrategy:
        if passenger_type == PassengerType.SENIOR_PWD:
            return DiscountedFare(self.senior_pwd_discount)
        return DistanceFare()

    def estimate(
        self,
        distance_km: float,
        passenger_type: PassengerType = PassengerType.REGULAR,
    ) -> int:
        if distance_km < 0:
            raise ValueError("distance_km must be non-negative")
        return self.strategy_for(passenger_type).calculate(
            distance_km, self.rate_per_km
        )
