from dataclasses import dataclass

from api.services.errors import UnknownPlan

CURRENCY = "GBP"


@dataclass(frozen=True)
class Plan:
    plan_type: str
    name: str
    frequency: str
    price_amount: int  # Minor units
    setting_key: str  # Holds the Square plan variation id
    currency: str = CURRENCY


# Prices are ours; the Square catalogue price is always overridden
PLANS = {
    plan.plan_type: plan
    for plan in (
        Plan("pro-monthly", "Pro Monthly", "MONTHLY", 299, "SQUARE_PLAN_PRO_MONTHLY"),
        Plan("pro-annual", "Pro Annual", "ANNUALLY", 2999, "SQUARE_PLAN_PRO_ANNUAL"),
        Plan("business-monthly", "Business Monthly", "MONTHLY", 999, "SQUARE_PLAN_BUSINESS_MONTHLY"),
        Plan("business-annual", "Business Annual", "ANNUALLY", 9999, "SQUARE_PLAN_BUSINESS_ANNUAL"),
    )
}


def get_plan(plan_type: str) -> Plan:
    plan = PLANS.get((plan_type or "").strip().lower())
    if plan is None:
        raise UnknownPlan(f"Unknown plan type: {plan_type}")
    return plan


def list_plans() -> list[Plan]:
    return list(PLANS.values())
