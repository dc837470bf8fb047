"""Shared fixtures: settings and an in-memory stand-in for the ARM client."""

from collections import Counter

import pytest

from cost_relay.config import Settings
from cost_relay.errors import UpstreamQueryError
from cost_relay.schemas import Subscription


class FakeAzureClient:
    """Mimics ``AzureManagementClient``; values that are exceptions get raised."""

    def __init__(self, subscriptions=None, costs=None, resources=None, plans=None, token_error=None):
        self.subscriptions = subscriptions or []
        self.costs = costs or {}
        self.resources = resources or {}
        self.plans = plans or {}
        self.token_error = token_error
        self.calls = Counter()

    async def get_access_token(self):
        self.calls["token"] += 1
        if self.token_error:
            raise self.token_error
        return "token"

    async def list_subscriptions(self, token):
        self.calls["subscriptions"] += 1
        return list(self.subscriptions)

    def _lookup(self, table, subscription_id, default):
        value = table.get(subscription_id, default)
        if isinstance(value, Exception):
            raise value
        return value

    async def query_costs(self, token, subscription_id, start_date, end_date):
        self.calls["costs"] += 1
        return self._lookup(self.costs, subscription_id, {"rows": []})

    async def query_top_resources(self, token, subscription_id, start_date, end_date):
        self.calls["resources"] += 1
        return self._lookup(self.resources, subscription_id, {"rows": []})

    async def list_defender_plans(self, token, subscription_id):
        self.calls["plans"] += 1
        return self.plans.get(subscription_id, [])


def subs(*ids):
    return [Subscription(subscriptionId=i, displayName=f"Sub {i}") for i in ids]


def query_failure(subscription_id):
    return UpstreamQueryError(f"Failed to fetch cost data for {subscription_id}", subscription_id)


@pytest.fixture()
def settings():
    return Settings(tenant_id="tenant", client_id="client", client_secret="secret")


@pytest.fixture()
def fake_client():
    return FakeAzureClient()
