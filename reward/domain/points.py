"""
Points calculation for distance contributions.

points(distance) = floor(distance × rate), rounded toward zero.

The calculator is always fed the distance *delta* of an aggregation step, never
absolute totals: floor(a + b) != floor(a) + floor(b), so recomputing points from
before/after totals drifts away from the sum of the awarded deltas.
Negative deltas are rounded toward zero as well (sign-magnitude), which makes
"add x" followed by "remove x" net exactly zero points.
"""
from decimal import Decimal, ROUND_DOWN

from reward.config import ROUNDING_DELTA, ROUNDING_LEGACY


def calculate_points(distance_km: Decimal, points_per_km: Decimal) -> int:
    """
    Pure function: points for a (possibly negative) distance delta.

    >>> calculate_points(Decimal("12.5"), Decimal("10"))
    125
    >>> calculate_points(Decimal("-0.05"), Decimal("10"))
    0
    """
    raw = Decimal(distance_km) * Decimal(points_per_km)
    return int(raw.to_integral_value(rounding=ROUND_DOWN))


def points_for_change(
    old_distance_km: Decimal,
    new_distance_km: Decimal,
    points_per_km: Decimal,
    mode: str = ROUNDING_DELTA,
) -> int:
    """
    Points delta when a contribution changes from old to new distance in place.

    `delta` mode: points(new - old).
    `legacy` mode: points(new) - points(old), the historical behaviour kept for
    operators that need parity with ledgers built before delta accounting.
    """
    if mode == ROUNDING_LEGACY:
        return (
            calculate_points(new_distance_km, points_per_km)
            - calculate_points(old_distance_km, points_per_km)
        )
    return calculate_points(new_distance_km - old_distance_km, points_per_km)
