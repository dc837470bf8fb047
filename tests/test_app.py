from fastapi.testclient import TestClient

from cost_relay.app import create_app
from cost_relay.errors import UpstreamAuthError
from conftest import FakeAzureClient, query_failure, subs

RANGE = {"startDate": "2024-01-01", "endDate": "2024-01-31"}


def client_for(settings, fake):
    return TestClient(create_app(settings, client=fake))


def test_health(settings, fake_client):
    r = client_for(settings, fake_client).get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert sum(fake_client.calls.values()) == 0


def test_costs_endpoint_shape(settings):
    fake = FakeAzureClient(subscriptions=subs("a", "b"),
                           costs={"a": {"rows": [[4.2, "Microsoft Defender for Cloud", "Servers", "a", "rg"]]},
                                  "b": query_failure("b")})
    r = client_for(settings, fake).post("/api/costs", json=RANGE)
    assert r.status_code == 200
    body = r.json()
    assert body["properties"]["rows"] == [[4.2, "Microsoft Defender for Cloud", "Servers", "a", "rg", "Sub a"]]
    assert body["properties"]["columns"][0] == {"name": "Cost", "type": "Number"}
    assert body["subscriptions"] == [{"subscriptionId": "a", "displayName": "Sub a"},
                                     {"subscriptionId": "b", "displayName": "Sub b"}]


def test_costs_missing_params_is_400(settings, fake_client):
    http = client_for(settings, fake_client)
    for payload in ({"startDate": "2024-01-01"}, {"endDate": "2024-01-31"}, {}):
        r = http.post("/api/costs", json=payload)
        assert r.status_code == 400
        assert r.json() == {"error": "Missing required parameters"}
    r = http.post("/api/costs")
    assert r.status_code == 400
    assert sum(fake_client.calls.values()) == 0


def test_top_resources_missing_params_is_400(settings, fake_client):
    r = client_for(settings, fake_client).post("/api/top-resources", json={"startDate": "2024-01-01"})
    assert r.status_code == 400
    assert sum(fake_client.calls.values()) == 0


def test_costs_token_failure_is_500(settings):
    fake = FakeAzureClient(subscriptions=subs("a"), token_error=UpstreamAuthError("Failed to fetch access token"))
    r = client_for(settings, fake).post("/api/costs", json=RANGE)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch cost data"}
    assert fake.calls["subscriptions"] == 0


def test_top_resources_endpoint(settings):
    fake = FakeAzureClient(subscriptions=subs("a"),
                           resources={"a": {"rows": [[1.111, "/p/small", "S"], [9.999, "/p/large", "S"]]}})
    r = client_for(settings, fake).post("/api/top-resources", json=RANGE)
    assert r.status_code == 200
    assert r.json() == [
        {"subscriptionId": "a", "subscriptionName": "Sub a", "resourceName": "large",
         "resourceId": "/p/large", "meterSubCategory": "S", "cost": 10.0},
        {"subscriptionId": "a", "subscriptionName": "Sub a", "resourceName": "small",
         "resourceId": "/p/small", "meterSubCategory": "S", "cost": 1.11},
    ]


def test_top_resources_upstream_failure_is_500(settings):
    fake = FakeAzureClient(subscriptions=subs("a", "b"), resources={"b": query_failure("b")})
    r = client_for(settings, fake).post("/api/top-resources", json=RANGE)
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch top resources"}


def test_plans_endpoint(settings):
    fake = FakeAzureClient(subscriptions=subs("a", "b"),
                           plans={"a": [{"name": "Containers", "properties": {"pricingTier": "Standard"}}],
                                  "b": None})
    r = client_for(settings, fake).get("/api/plans")
    assert r.status_code == 200
    assert r.json() == [{"subscriptionId": "a", "subscriptionName": "Sub a",
                         "planName": "Containers", "pricingTier": "Standard"}]


def test_plans_empty(settings, fake_client):
    r = client_for(settings, fake_client).get("/api/plans")
    assert r.status_code == 200
    assert r.json() == []


def test_cors_preflight(settings, fake_client):
    r = client_for(settings, fake_client).options(
        "/api/costs",
        headers={"Origin": "http://127.0.0.1:5500", "Access-Control-Request-Method": "POST",
                 "Access-Control-Request-Headers": "Content-Type"})
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "*"
    assert "POST" in r.headers["access-control-allow-methods"]


def test_metrics_counts_requests(settings, fake_client):
    http = client_for(settings, fake_client)
    http.get("/api/plans")
    r = http.get("/metrics")
    assert r.status_code == 200
    assert 'relay_requests_total{endpoint="/api/plans",status="200"}' in r.text


def test_malformed_bodies_are_400(settings, fake_client):
    http = client_for(settings, fake_client)
    r = http.post("/api/costs", content="startDate=2024-01-01", headers={"Content-Type": "text/plain"})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required parameters"}
    r = http.post("/api/costs", json={"startDate": 20240101, "endDate": "2024-01-31"})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required parameters"}
    r = http.post("/api/top-resources", content="{not json", headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required parameters"}
    assert sum(fake_client.calls.values()) == 0


def test_plans_token_failure_is_500(settings):
    fake = FakeAzureClient(subscriptions=subs("a"), token_error=UpstreamAuthError("Failed to fetch access token"))
    r = client_for(settings, fake).get("/api/plans")
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch Defender plans"}
    assert fake.calls["plans"] == 0


def test_plans_skip_malformed_records(settings):
    fake = FakeAzureClient(subscriptions=subs("a", "b"),
                           plans={"a": ["oops"], "b": [{"name": "VM", "properties": {"pricingTier": "Free"}}]})
    r = client_for(settings, fake).get("/api/plans")
    assert r.status_code == 200
    assert r.json() == [{"subscriptionId": "b", "subscriptionName": "Sub b", "planName": "VM", "pricingTier": "Free"}]
