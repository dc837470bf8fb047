from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

registry = CollectorRegistry()
requests_total = Counter("relay_requests_total", "Inbound API requests by endpoint and status",
                         ["endpoint", "status"], registry=registry)
upstream_failures = Counter("relay_upstream_failures_total", "Failed management-plane calls",
                            ["operation"], registry=registry)
request_seconds = Histogram("relay_request_seconds", "Inbound API request latency", ["endpoint"],
                            registry=registry)

def scrape_metrics():
    return generate_latest(registry), CONTENT_TYPE_LATEST
