"""Fan-out aggregation of per-subscription Defender cost and plan data.

Every inbound request acquires one token and one subscription listing, then
launches one query per subscription and waits for all of them to settle.
What happens to a failed branch is decided per view by a ``FailurePolicy``:
the costs view skips it, the top-resources view fails the whole request.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Any, Awaitable, Callable, List, Optional

from .config import Settings
from .errors import ValidationError
from .schemas import (COST_COLUMNS, CostProperties, CostResponse, CostRow, DefenderPlan,
                      Subscription, TopResource)

LOG = logging.getLogger(__name__)

MISSING_PARAMETERS = "Missing required parameters"


class FailurePolicy(enum.Enum):
    SKIP = "skip"
    RAISE = "raise"


@dataclass
class Settled:
    subscription: Subscription
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(subscriptions: List[Subscription],
                         call: Callable[[Subscription], Awaitable[Any]]) -> List[Settled]:
    """Run ``call`` for every subscription concurrently and wait for all of them."""
    outcomes = await asyncio.gather(*(call(sub) for sub in subscriptions), return_exceptions=True)
    settled = []
    for sub, outcome in zip(subscriptions, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            settled.append(Settled(sub, error=outcome))
        else:
            settled.append(Settled(sub, value=outcome))
    return settled


def apply_policy(results: List[Settled], policy: FailurePolicy, label: str) -> List[Settled]:
    kept = []
    for result in results:
        if result.ok:
            kept.append(result)
        elif policy is FailurePolicy.RAISE:
            raise result.error
        else:
            LOG.error(f"Error for subscription {result.subscription.subscriptionId} ({label}): {result.error}")
    return kept


def round_cost(value) -> float:
    if value is None:
        return 0.0
    amount = Decimal(str(value))
    if not amount.is_finite():
        return float(amount)
    with localcontext() as ctx:
        # enough digits for the integer part plus two decimals
        ctx.prec = max(ctx.prec, amount.adjusted() + 4)
        return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def resource_name(resource_id: Optional[str]) -> str:
    if not resource_id:
        return "Unknown"
    return resource_id.split("/")[-1]


def _rows(data) -> list:
    if not data:
        return []
    return data.get("rows") or []


def cost_rows(subscription: Subscription, data) -> List[CostRow]:
    out = []
    for row in _rows(data):
        # [cost, meterCategory, meterSubCategory, subscriptionId, resourceGroup, ...]
        padded = list(row) + [None] * (5 - len(row))
        cost, meter_category, meter_sub_category, _, resource_group = padded[:5]
        out.append(CostRow(
            cost=cost,
            meterCategory=meter_category,
            meterSubCategory=meter_sub_category,
            subscriptionId=subscription.subscriptionId,
            resourceGroup=resource_group or "Unknown",
            subscriptionName=subscription.displayName,
        ))
    return out


def top_resource_rows(subscription: Subscription, data) -> List[TopResource]:
    out = []
    for row in _rows(data):
        padded = list(row) + [None] * (3 - len(row))
        cost, resource_id, meter_sub_category = padded[:3]
        out.append(TopResource(
            subscriptionId=subscription.subscriptionId,
            subscriptionName=subscription.displayName,
            resourceName=resource_name(resource_id),
            resourceId=resource_id,
            meterSubCategory=meter_sub_category,
            cost=round_cost(cost),
        ))
    return out


def rank(resources: List[TopResource], limit: int) -> List[TopResource]:
    # sorted() is stable, so equal costs keep subscription order
    return sorted(resources, key=lambda r: r.cost, reverse=True)[:limit]


def plan_rows(subscription: Subscription, plans) -> List[DefenderPlan]:
    out = []
    for plan in plans or []:
        if not isinstance(plan, dict):
            continue
        properties = plan.get("properties")
        tier = properties.get("pricingTier") if isinstance(properties, dict) else None
        if not tier:
            continue
        out.append(DefenderPlan(
            subscriptionId=subscription.subscriptionId,
            subscriptionName=subscription.displayName,
            planName=plan.get("name"),
            pricingTier=tier,
        ))
    return out


def require_range(start_date: Optional[str], end_date: Optional[str]):
    if not start_date or not end_date:
        raise ValidationError(MISSING_PARAMETERS)


class Aggregator:
    """Joins per-subscription query results into the dashboard views."""

    cost_policy = FailurePolicy.SKIP
    # Parity with the original relay: one failing subscription fails the view.
    top_resources_policy = FailurePolicy.RAISE

    def __init__(self, settings: Settings, client):
        self.settings = settings
        self.client = client

    async def _session(self):
        token = await self.client.get_access_token()
        subscriptions = await self.client.list_subscriptions(token)
        return token, subscriptions

    async def aggregate_costs(self, start_date: Optional[str], end_date: Optional[str]) -> CostResponse:
        require_range(start_date, end_date)
        LOG.info(f"Received request: startDate={start_date}, endDate={end_date}")
        token, subscriptions = await self._session()

        results = await gather_settled(
            subscriptions,
            lambda sub: self.client.query_costs(token, sub.subscriptionId, start_date, end_date))

        rows = []
        for result in apply_policy(results, self.cost_policy, "cost data"):
            rows.extend(r.as_row() for r in cost_rows(result.subscription, result.value))
        LOG.info(f"Aggregated {len(rows)} cost rows")
        if not rows:
            LOG.info("No cost data found for any subscription")

        return CostResponse(properties=CostProperties(rows=rows, columns=COST_COLUMNS),
                            subscriptions=subscriptions)

    async def top_resources(self, start_date: Optional[str], end_date: Optional[str]) -> List[TopResource]:
        require_range(start_date, end_date)
        token, subscriptions = await self._session()

        results = await gather_settled(
            subscriptions,
            lambda sub: self.client.query_top_resources(token, sub.subscriptionId, start_date, end_date))

        merged = []
        for result in apply_policy(results, self.top_resources_policy, "top resources"):
            merged.extend(top_resource_rows(result.subscription, result.value))
        ranked = rank(merged, self.settings.top_resources_limit)
        LOG.info(f"Top resources: {len(ranked)} of {len(merged)}")
        return ranked

    async def defender_plans(self) -> List[DefenderPlan]:
        token, subscriptions = await self._session()

        # the plan client reports failure as None, so every branch settles ok
        results = await gather_settled(
            subscriptions,
            lambda sub: self.client.list_defender_plans(token, sub.subscriptionId))

        plans = []
        for result in apply_policy(results, FailurePolicy.SKIP, "defender plans"):
            plans.extend(plan_rows(result.subscription, result.value))
        LOG.info(f"Fetched {len(plans)} Defender plans")
        return plans
