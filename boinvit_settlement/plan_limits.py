"""
Plan limits for business subscriptions.
"""

from typing import Optional

# None means unlimited
PLAN_LIMITS = {
    "starter": {"staff_limit": 5, "bookings_limit": 1000},
    "medium": {"staff_limit": 15, "bookings_limit": 3000},
    "premium": {"staff_limit": None, "bookings_limit": None},
}


def get_plan_limits(plan: Optional[str]) -> Optional[dict]:
    """Limits for a plan, or None when the plan is unknown."""
    if not plan:
        return None
    limits = PLAN_LIMITS.get(plan.lower())
    return dict(limits) if limits is not None else None
