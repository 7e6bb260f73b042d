import math
import os
import random
from datetime import date, timedelta

PRICING_DEMAND_MAX = float(os.getenv("PRICING_DEMAND_MAX", 0.3))
PRICING_SEASON_ANCHOR = os.getenv("PRICING_SEASON_ANCHOR", "check_in")

WEEKEND_MULTIPLIER = 1.2
CHILD_WEIGHT = 0.5


# ---------------------------------------------------------------------
# DEMAND POLICIES
# ---------------------------------------------------------------------
def random_demand(max_factor: float = PRICING_DEMAND_MAX):
    def draw():
        return random.uniform(0, max_factor)
    return draw


def fixed_demand(factor: float):
    return lambda: factor


# ---------------------------------------------------------------------
# SEASON ANCHOR POLICIES
# Pick the date that seasonal rules are matched against.
# ---------------------------------------------------------------------
def anchor_today(check_in, check_out, today):
    return today


def anchor_check_in(check_in, check_out, today):
    return check_in


SEASON_ANCHORS = {
    "today": anchor_today,
    "check_in": anchor_check_in,
}


def seasonal_adjustment(rules, anchor: date) -> float:
    adjustment = 0.0
    if not isinstance(rules, (list, tuple)):
        return adjustment

    for rule in rules:
        if rule.start_date <= anchor <= rule.end_date:
            adjustment = rule.price or 0.0
    return adjustment


def calculate_dynamic_price(hotel, check_in, check_out, base_price=None,
                            demand_factor=None, season_anchor=None, today=None) -> int:
    """Nightly price: base + seasonal adjustment + demand surcharge, rounded."""
    if base_price is None:
        base_price = getattr(hotel, "base_price", None) or 0
    demand_factor = demand_factor or random_demand()
    season_anchor = season_anchor or SEASON_ANCHORS.get(PRICING_SEASON_ANCHOR, anchor_check_in)
    today = today or date.today()

    adjustment = seasonal_adjustment(
        getattr(hotel, "seasonal_pricing", None),
        season_anchor(check_in, check_out, today),
    )

    surcharge = base_price * demand_factor()
    return round(base_price + adjustment + surcharge)


def count_nights(check_in, check_out) -> int:
    return math.ceil((check_out - check_in) / timedelta(days=1))


def is_weekend_stay(check_in, check_out) -> bool:
    # Friday or Saturday on either end of the stay
    return check_in.weekday() in (4, 5) or check_out.weekday() in (4, 5)


def calculate_total_price(nightly_price, check_in, check_out, adults, children=0) -> float:
    nights = count_nights(check_in, check_out)
    if nights <= 0:
        return 0.0

    total = nightly_price * nights * (adults + children * CHILD_WEIGHT)

    if is_weekend_stay(check_in, check_out):
        total *= WEEKEND_MULTIPLIER

    return round(total, 2)


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))
