import logging, time
from typing import List, Dict, Any, Optional

import httpx
from azure.core.credentials import AccessToken
from azure.identity.aio import ClientSecretCredential
from azure.mgmt.costmanagement.aio import CostManagementClient
from azure.mgmt.subscription.aio import SubscriptionClient

from ..config import Settings
from ..errors import UpstreamAuthError, UpstreamQueryError
from ..metrics import upstream_failures
from ..schemas import Subscription

LOG = logging.getLogger(__name__)

PRICINGS_API_VERSION = "2023-01-01"

COST_GROUPING = ["MeterCategory", "MeterSubCategory", "SubscriptionId", "ResourceGroup"]
RESOURCE_GROUPING = ["ResourceId", "MeterSubCategory"]


class StaticTokenCredential:
    """Hands the SDK clients the bearer token already acquired for this request."""

    def __init__(self, token: str, lifetime: int = 3600):
        self._token = AccessToken(token, int(time.time()) + lifetime)

    async def get_token(self, *scopes, **kwargs) -> AccessToken:
        return self._token

    async def close(self):
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return None


def _build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient()


def _cost_client(credential, base_url: str) -> CostManagementClient:
    return CostManagementClient(credential, base_url=base_url)


def _subscription_client(credential, base_url: str) -> SubscriptionClient:
    return SubscriptionClient(credential, base_url=base_url)


def _timestamp(value: str, end_of_day: bool = False) -> str:
    # Cost Management wants full timestamps; date-only input covers the whole day
    if "T" in value:
        return value
    return f"{value}T23:59:59Z" if end_of_day else f"{value}T00:00:00Z"


def cost_query(start_date: str, end_date: str, grouping: List[str], meter_category: str) -> Dict[str, Any]:
    return {
        "type": "Usage",
        "timeframe": "Custom",
        "timePeriod": {"from": _timestamp(start_date), "to": _timestamp(end_date, end_of_day=True)},
        "dataset": {
            "granularity": "None",
            "aggregation": {"totalCost": {"name": "Cost", "function": "Sum"}},
            "grouping": [{"type": "Dimension", "name": g} for g in grouping],
            "filter": {
                "dimensions": {"name": "MeterCategory", "operator": "In", "values": [meter_category]},
            },
        },
    }


class AzureManagementClient:
    """Thin async wrapper over the ARM calls the relay needs.

    Cost and resource queries raise ``UpstreamQueryError`` on failure; the
    plan fetch logs and returns ``None`` instead.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def _url(self, path: str) -> str:
        return self.settings.arm_endpoint.rstrip("/") + path

    async def get_access_token(self) -> str:
        s = self.settings
        try:
            async with ClientSecretCredential(s.tenant_id, s.client_id, s.client_secret,
                                              authority=s.login_authority) as credential:
                token = await credential.get_token(s.arm_scope)
        except Exception as e:
            upstream_failures.labels(operation="token").inc()
            LOG.error(f"Error fetching access token: {e}")
            raise UpstreamAuthError("Failed to fetch access token") from e
        LOG.info("Access token fetched successfully")
        return token.token

    async def list_subscriptions(self, token: str) -> List[Subscription]:
        subscriptions = []
        try:
            async with _subscription_client(StaticTokenCredential(token), self.settings.arm_endpoint) as client:
                async for sub in client.subscriptions.list():
                    subscriptions.append(Subscription(subscriptionId=sub.subscription_id,
                                                      displayName=sub.display_name))
        except Exception as e:
            upstream_failures.labels(operation="subscriptions").inc()
            LOG.error(f"Error fetching subscriptions: {e}")
            raise UpstreamQueryError("Failed to fetch subscriptions") from e
        LOG.info(f"Fetched {len(subscriptions)} subscriptions")
        return subscriptions

    async def _usage(self, token: str, subscription_id: str, query: Dict[str, Any], label: str) -> Dict[str, Any]:
        scope = f"/subscriptions/{subscription_id}"
        try:
            async with _cost_client(StaticTokenCredential(token), self.settings.arm_endpoint) as client:
                response = await client.query.usage(scope=scope, parameters=query)
        except Exception as e:
            upstream_failures.labels(operation=label).inc()
            LOG.error(f"Error fetching {label} for {subscription_id}: {e}")
            raise UpstreamQueryError(f"Failed to fetch {label} for {subscription_id}", subscription_id) from e
        asdict = response.as_dict()
        result = {"columns": asdict.get("columns", []), "rows": asdict.get("rows") or []}
        LOG.info(f"{label} for {subscription_id}: {len(result['rows'])} rows")
        return result

    async def query_costs(self, token: str, subscription_id: str, start_date: str, end_date: str) -> Dict[str, Any]:
        query = cost_query(start_date, end_date, COST_GROUPING, self.settings.meter_category)
        return await self._usage(token, subscription_id, query, "cost data")

    async def query_top_resources(self, token: str, subscription_id: str, start_date: str, end_date: str) -> Dict[str, Any]:
        query = cost_query(start_date, end_date, RESOURCE_GROUPING, self.settings.meter_category)
        return await self._usage(token, subscription_id, query, "top resources")

    async def list_defender_plans(self, token: str, subscription_id: str) -> Optional[List[Dict[str, Any]]]:
        url = self._url(f"/subscriptions/{subscription_id}/providers/Microsoft.Security/pricings"
                        f"?api-version={PRICINGS_API_VERSION}")
        try:
            async with _build_client() as client:
                res = await client.get(url, headers={"Authorization": f"Bearer {token}"})
                res.raise_for_status()
                plans = res.json().get("value", [])
        except Exception as e:
            upstream_failures.labels(operation="defender plans").inc()
            LOG.error(f"Error fetching Defender plans for {subscription_id}: {e}")
            return None
        LOG.info(f"Defender plans for {subscription_id}: {len(plans)} plans found")
        return plans
