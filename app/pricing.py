import math

from pydantic import BaseModel

from app import config
from app.errors import InvalidStateError


class PricingRules(BaseModel):
    base_fee: int = config.BASE_FEE
    included_seconds: int = config.INCLUDED_SECONDS
    per_minute_rate: int = config.PER_MINUTE_RATE
    daily_cap: int = config.DAILY_CAP
    minimum_session_seconds: int = config.MIN_SESSION_SECONDS


DEFAULT_RULES = PricingRules()


def compute_time_cost(elapsed_seconds: int, rules: PricingRules = DEFAULT_RULES) -> int:
    """
    Flat base fee for the first hour, then every started minute at the
    per-minute rate, capped at the daily maximum. Never free.
    """
    elapsed = max(0, elapsed_seconds)
    extra_minutes = math.ceil(max(0, elapsed - rules.included_seconds) / 60)
    return min(rules.base_fee + extra_minutes * rules.per_minute_rate, rules.daily_cap)


def elapsed_seconds(check_in_ms, now_ms: int) -> int:
    if isinstance(check_in_ms, bool) or not isinstance(check_in_ms, int) or check_in_ms < 0:
        raise InvalidStateError(
            f"Check-in time {check_in_ms!r} is not a valid timestamp",
            reason="corrupt_timestamp",
        )
    # clock skew clamps to zero
    return max(0, (now_ms - check_in_ms) // 1000)


def apply_minimum_duration_policy(check_in_ms: int, now_ms: int, minimum_seconds: int) -> int:
    """
    Effective check-in used for pricing. Moves check-in back so the billed
    duration is at least `minimum_seconds`; 0 disables the policy.
    The session's stored check-in time is left alone.
    """
    if minimum_seconds <= 0:
        return check_in_ms
    return min(check_in_ms, now_ms - minimum_seconds * 1000)


def billed_seconds(check_in_ms, now_ms: int, rules: PricingRules = DEFAULT_RULES) -> int:
    elapsed_seconds(check_in_ms, now_ms)
    effective = apply_minimum_duration_policy(check_in_ms, now_ms, rules.minimum_session_seconds)
    return max(0, (now_ms - effective) // 1000)
