"""FastAPI HTTP API for trailing-stop orders and portfolio batches."""

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field

from swap_engine import __version__
from swap_engine.batch import BatchOrchestrator, LegSpec, PortfolioLeg, summarize
from swap_engine.engine import TrailingStopEngine
from swap_engine.errors import EngineError, ValidationError
from swap_engine.orders import OrderStatus
from swap_engine.rebalance import TargetAllocation, analyze_drift

Number = str | float | int


class CreateOrderRequest(BaseModel):
    owner_id: str
    from_asset: str
    from_network: str | None = None
    to_asset: str
    to_network: str | None = None
    from_amount: Number
    trailing_percentage: Number
    settle_address: str
    expires_at: str | None = None


class CancelOrderRequest(BaseModel):
    owner_id: str


class LegRequest(BaseModel):
    to_asset: str
    to_chain: str | None = None
    percentage: Number


class BatchRequest(BaseModel):
    amount: Number
    from_asset: str
    from_chain: str | None = None
    legs: list[LegRequest]
    settle_address: str | None = None


class RetryRequest(BaseModel):
    legs: list[dict[str, Any]]
    failed_leg_ids: list[str] = Field(default_factory=list)
    settle_address: str | None = None


class TargetRequest(BaseModel):
    asset: str
    network: str = "ethereum"
    target_percentage: Number


class RebalanceRequest(BaseModel):
    holdings: dict[str, Number]
    targets: list[TargetRequest]
    threshold: Number = 5
    execute: bool = False
    settle_address: str | None = None


def create_app(engine: TrailingStopEngine, batches: BatchOrchestrator) -> Any:
    """Create and return the FastAPI application.

    Args:
        engine: Trailing-stop engine backing the ``/api/orders`` routes.
        batches: Batch orchestrator backing the ``/api/batches`` routes.

    Returns:
        A FastAPI application instance.
    """
    from fastapi import FastAPI, Request  # noqa: PLC0415
    from fastapi.exceptions import RequestValidationError  # noqa: PLC0415
    from fastapi.responses import JSONResponse  # noqa: PLC0415

    app = FastAPI(title="Swap Engine", version=__version__)

    @app.exception_handler(EngineError)
    def handle_engine_error(_request: Request, exc: EngineError) -> JSONResponse:
        body: dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, ValidationError):
            body["errors"] = exc.errors
        return JSONResponse(body, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    def handle_request_shape(_request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = {".".join(str(part) for part in err["loc"][1:]) or "body": err["msg"] for err in exc.errors()}
        return JSONResponse({"error": "Invalid request", "errors": errors}, status_code=400)

    @app.get("/api/health")
    def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    @app.post("/api/orders")
    def api_create_order(payload: CreateOrderRequest) -> JSONResponse:
        order = engine.create_order(
            payload.owner_id,
            payload.from_asset,
            payload.from_network,
            payload.from_amount,
            payload.to_asset,
            payload.to_network,
            payload.trailing_percentage,
            payload.settle_address,
            expires_at=payload.expires_at,
        )
        return JSONResponse(order.to_dict(), status_code=201)

    @app.get("/api/orders")
    def api_list_orders(owner_id: str, status: str | None = None, limit: int = 100) -> JSONResponse:
        try:
            status_filter = OrderStatus(status) if status else None
        except ValueError as exc:
            raise ValidationError({"status": f"unknown status {status!r}"}) from exc
        orders = engine.list_orders(owner_id, status=status_filter, limit=limit)
        return JSONResponse([order.to_dict() for order in orders])

    @app.get("/api/orders/{order_id}")
    def api_get_order(order_id: int, owner_id: str) -> JSONResponse:
        return JSONResponse(engine.get_order(order_id, owner_id).to_dict())

    @app.post("/api/orders/{order_id}/cancel")
    def api_cancel_order(order_id: int, payload: CancelOrderRequest) -> JSONResponse:
        return JSONResponse(engine.cancel_order(order_id, payload.owner_id).to_dict())

    @app.post("/api/batches")
    def api_execute_batch(payload: BatchRequest) -> JSONResponse:
        legs = batches.split_intent(
            payload.amount,
            payload.from_asset,
            payload.from_chain,
            [LegSpec(to_asset=leg.to_asset, to_chain=leg.to_chain, percentage=leg.percentage) for leg in payload.legs],
        )
        batches.execute_batch(legs, settle_address=payload.settle_address)
        return JSONResponse(_batch_body(legs))

    @app.post("/api/batches/retry")
    def api_retry_batch(payload: RetryRequest) -> JSONResponse:
        try:
            legs = [PortfolioLeg.from_dict(leg) for leg in payload.legs]
        except (KeyError, ValueError, InvalidOperation) as exc:
            raise ValidationError({"legs": f"malformed leg: {exc}"}) from exc
        if not legs:
            raise ValidationError({"legs": "at least one leg is required"})
        known = {leg.id for leg in legs}
        unknown = [leg_id for leg_id in payload.failed_leg_ids if leg_id not in known]
        if unknown:
            raise ValidationError({"failed_leg_ids": f"unknown leg ids: {', '.join(unknown)}"})
        batches.retry_failed(legs, payload.failed_leg_ids, settle_address=payload.settle_address)
        return JSONResponse(_batch_body(legs))

    @app.post("/api/rebalance")
    def api_rebalance(payload: RebalanceRequest) -> JSONResponse:
        try:
            holdings = {asset: Decimal(str(value)) for asset, value in payload.holdings.items()}
            targets = [
                TargetAllocation(t.asset, t.network.lower(), Decimal(str(t.target_percentage))) for t in payload.targets
            ]
            threshold = Decimal(str(payload.threshold))
        except InvalidOperation as exc:
            raise ValidationError({"body": "holdings, targets and threshold must be numbers"}) from exc
        report = analyze_drift(holdings, targets, threshold)
        body: dict[str, Any] = {"report": report.to_dict()}
        if payload.execute:
            body.update(_batch_body(batches.execute_rebalance(report, settle_address=payload.settle_address)))
        return JSONResponse(body)

    return app


def _batch_body(legs: list[PortfolioLeg]) -> dict[str, Any]:
    return {"legs": [leg.to_dict() for leg in legs], "summary": summarize(legs).to_dict()}
