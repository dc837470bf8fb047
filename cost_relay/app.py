import argparse, logging, sys, time
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .aggregator import MISSING_PARAMETERS, Aggregator
from .config import Settings
from .errors import ConfigurationError, ValidationError
from .metrics import requests_total, request_seconds, scrape_metrics
from .providers.azure import AzureManagementClient
from .schemas import CostResponse, DateRange, DefenderPlan, ErrorResponse, TopResource

LOG = logging.getLogger(__name__)

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


async def _relay(endpoint: str, failure_message: str, call):
    started = time.perf_counter()
    try:
        result = await call
    except ValidationError as e:
        requests_total.labels(endpoint=endpoint, status="400").inc()
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception:
        LOG.exception(f"Error in {endpoint}")
        requests_total.labels(endpoint=endpoint, status="500").inc()
        return JSONResponse(status_code=500, content={"error": failure_message})
    finally:
        request_seconds.labels(endpoint=endpoint).observe(time.perf_counter() - started)
    requests_total.labels(endpoint=endpoint, status="200").inc()
    return result


def create_app(settings: Settings, client=None) -> FastAPI:
    app = FastAPI(title="Defender Cost Relay API", version="1.0.0")
    app.state.aggregator = Aggregator(settings, client or AzureManagementClient(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def malformed_body(request: Request, exc: RequestValidationError):
        # unparseable or wrongly typed dates count as missing ones
        LOG.warning(f"Rejected {request.url.path}: {exc.errors()}")
        requests_total.labels(endpoint=request.url.path, status="400").inc()
        return JSONResponse(status_code=400, content={"error": MISSING_PARAMETERS})

    @app.get("/api/health")
    def health():
        return {"status": "ok"}

    @app.post("/api/costs", response_model=CostResponse, responses=ERROR_RESPONSES)
    async def costs(body: Optional[DateRange] = None, aggregator: Aggregator = Depends(get_aggregator)):
        body = body or DateRange()
        return await _relay("/api/costs", "Failed to fetch cost data",
                            aggregator.aggregate_costs(body.startDate, body.endDate))

    @app.post("/api/top-resources", response_model=List[TopResource], responses=ERROR_RESPONSES)
    async def top_resources(body: Optional[DateRange] = None, aggregator: Aggregator = Depends(get_aggregator)):
        body = body or DateRange()
        return await _relay("/api/top-resources", "Failed to fetch top resources",
                            aggregator.top_resources(body.startDate, body.endDate))

    @app.get("/api/plans", response_model=List[DefenderPlan], responses=ERROR_RESPONSES)
    async def plans(aggregator: Aggregator = Depends(get_aggregator)):
        return await _relay("/api/plans", "Failed to fetch Defender plans", aggregator.defender_plans())

    @app.get("/metrics")
    def metrics():
        output, ctype = scrape_metrics()
        return Response(content=output, media_type=ctype)

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Relay Defender for Cloud cost data across subscriptions")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.ERROR, format="[cost-relay] %(message)s")
        LOG.error(str(e))
        sys.exit(1)

    logging.basicConfig(level=settings.log_level, format="[cost-relay] %(levelname)s %(name)s: %(message)s")
    host = args.host or settings.host
    port = args.port or settings.port
    LOG.info(f"Server running at http://{host}:{port}")
    uvicorn.run(create_app(settings), host=host, port=port)


if __name__ == "__main__":
    main()
