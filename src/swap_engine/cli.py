"""CLI entry point for swap-engine."""

import json
import logging
import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated

import typer

from swap_engine import __version__
from swap_engine.batch import LegSpec, LegStatus, PortfolioLeg, summarize
from swap_engine.config import AppConfig, load_config
from swap_engine.errors import EngineError, TransientError, ValidationError
from swap_engine.monitoring.logging import setup_logging
from swap_engine.orchestrator import Orchestrator
from swap_engine.orders import OrderStatus
from swap_engine.rebalance import TargetAllocation, analyze_drift

logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"swap-engine {__version__}")
        raise typer.Exit()


app = typer.Typer(name="swap-engine", help="Swap Engine: trailing-stop orders and portfolio swap batches")


@app.callback()
def main(
    version: Annotated[
        bool, typer.Option("--version", "-V", help="Show version and exit", callback=_version_callback, is_eager=True)
    ] = False,
) -> None:
    """Swap Engine: trailing-stop orders and portfolio swap batches."""


DEFAULT_CONFIG = Path("config.yaml")
DEFAULT_DB = Path("swap_engine.db")

ConfigOption = Annotated[Path, typer.Option("--config", "-c", help="Path to config.yaml")]
DbOption = Annotated[Path, typer.Option("--db", help="Path to SQLite database")]
OwnerOption = Annotated[str, typer.Option("--owner", "-o", help="Owner id the order belongs to")]


def _load_config(config_path: Path) -> AppConfig:
    """Load config from file, warning if the file does not exist."""
    if config_path.exists():
        return load_config(config_path)
    logger.warning("Config file %s not found, using defaults", config_path)
    return AppConfig()


def _setup_logging(cfg: AppConfig) -> None:
    log_file = Path(cfg.monitoring.log_file) if cfg.monitoring.log_file else None
    setup_logging(structured=cfg.monitoring.structured_logging, log_file=log_file)


def _fail(exc: EngineError) -> None:
    """Print an engine error (with field errors, if any) and exit non-zero."""
    typer.echo(f"Error: {exc}", err=True)
    if isinstance(exc, ValidationError):
        for field, reason in exc.errors.items():
            typer.echo(f"  {field}: {reason}", err=True)
    raise typer.Exit(code=1)


@app.command()
def create(
    from_asset: Annotated[str, typer.Argument(help="Asset to sell, e.g. ETH")],
    amount: Annotated[str, typer.Argument(help="Amount of FROM_ASSET to sell")],
    to_asset: Annotated[str, typer.Argument(help="Asset to receive, e.g. USDC")],
    trail: Annotated[str, typer.Option("--trail", "-t", help="Trailing percentage (0-50]")],
    settle_address: Annotated[str, typer.Option("--settle-address", "-a", help="Destination address")],
    owner: OwnerOption,
    from_network: Annotated[str | None, typer.Option("--from-network", help="Network of FROM_ASSET")] = None,
    to_network: Annotated[str | None, typer.Option("--to-network", help="Network of TO_ASSET")] = None,
    expires_at: Annotated[str | None, typer.Option("--expires-at", help="ISO-8601 expiry time")] = None,
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Create a trailing-stop order.

    Put options first and separate the arguments with -- when one starts with a dash.
    """
    cfg = _load_config(config)
    orch = Orchestrator(config=cfg, db_path=db)
    try:
        order = orch.engine.create_order(
            owner, from_asset, from_network, amount, to_asset, to_network, trail, settle_address, expires_at=expires_at
        )
    except ValidationError as exc:
        _fail(exc)
    finally:
        orch.close()
    typer.echo(
        f"Created trailing stop {order.id}: sell {order.from_amount} {order.from_asset} "
        f"for {order.to_asset} if price drops {order.trailing_percentage}% from peak"
    )


@app.command()
def cancel(
    order_id: Annotated[int, typer.Argument(help="Order id to cancel")],
    owner: OwnerOption,
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Cancel a pending trailing-stop order."""
    cfg = _load_config(config)
    orch = Orchestrator(config=cfg, db_path=db)
    try:
        order = orch.engine.cancel_order(order_id, owner)
    except EngineError as exc:
        _fail(exc)
    finally:
        orch.close()
    typer.echo(f"Order {order.id} {order.status.value}")


@app.command(name="list")
def list_orders(
    owner: OwnerOption,
    status: Annotated[str | None, typer.Option("--status", help="Filter by status")] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print orders as JSON")] = False,
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """List an owner's trailing-stop orders."""
    try:
        status_filter = OrderStatus(status) if status else None
    except ValueError:
        typer.echo(f"Unknown status {status!r}", err=True)
        raise typer.Exit(code=1) from None

    cfg = _load_config(config)
    orch = Orchestrator(config=cfg, db_path=db)
    try:
        orders = orch.engine.list_orders(owner, status=status_filter)
    finally:
        orch.close()

    if as_json:
        typer.echo(json.dumps([order.to_dict() for order in orders], indent=2))
        return
    if not orders:
        typer.echo("No orders")
        return
    for order in orders:
        typer.echo(
            f"#{order.id} {order.status.value:<9} {order.from_amount} {order.from_asset} -> {order.to_asset} "
            f"trail={order.trailing_percentage}% peak={order.peak_price} trigger={order.trigger_price}"
        )


@app.command()
def tick(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Evaluate every pending order once."""
    cfg = _load_config(config)
    _setup_logging(cfg)
    orch = Orchestrator(config=cfg, db_path=db)
    try:
        result = orch.tick()
    finally:
        orch.close()
    typer.echo(
        f"Checked: {result['checked']}, Completed: {result['completed']}, "
        f"Failed: {result['failed']}, Skipped: {result['skipped']}, Expired: {result['expired']}"
    )


@app.command()
def run(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Run the evaluation loop every poll_interval seconds."""
    cfg = _load_config(config)
    _setup_logging(cfg)
    orch = Orchestrator(config=cfg, db_path=db)
    typer.echo(f"Starting swap-engine in {cfg.mode} mode (poll every {cfg.poll_interval}s)")
    try:
        while True:
            result = orch.tick()
            typer.echo(
                f"[{cfg.mode}] checked={result['checked']} completed={result['completed']} "
                f"failed={result['failed']} expired={result['expired']}"
            )
            time.sleep(orch.poll_interval)
    except KeyboardInterrupt:
        typer.echo("\nStopped.")
    finally:
        orch.close()


@app.command()
def batch(
    amount: Annotated[str, typer.Argument(help="Total amount of FROM_ASSET to split")],
    from_asset: Annotated[str, typer.Argument(help="Asset to sell")],
    legs: Annotated[list[str], typer.Argument(help="Legs as ASSET:PERCENT or ASSET@CHAIN:PERCENT")],
    from_chain: Annotated[str | None, typer.Option("--from-chain", help="Network of FROM_ASSET")] = None,
    settle_address: Annotated[str | None, typer.Option("--settle-address", "-a", help="Destination address")] = None,
    retries: Annotated[int, typer.Option("--retry", help="Retry rounds for failed legs")] = 0,
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Split AMOUNT of FROM_ASSET across legs and execute them in order."""
    cfg = _load_config(config)
    _setup_logging(cfg)
    try:
        specs = [_parse_leg(raw) for raw in legs]
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    orch = Orchestrator(config=cfg, db_path=db)
    try:
        try:
            portfolio = orch.batches.split_intent(amount, from_asset, from_chain, specs)
        except ValidationError as exc:
            _fail(exc)
        orch.batches.execute_batch(portfolio, settle_address=settle_address)
        for _ in range(retries):
            failed = [leg for leg in portfolio if leg.status == LegStatus.ERROR]
            if not failed:
                break
            orch.batches.retry_failed(portfolio, failed, settle_address=settle_address)
    finally:
        orch.close()

    _print_legs(portfolio)


def _parse_leg(raw: str) -> LegSpec:
    """Parse ``ASSET:PCT`` or ``ASSET@CHAIN:PCT``."""
    target, sep, pct = raw.rpartition(":")
    if not sep or not target or not pct:
        msg = f"Invalid leg {raw!r}; expected ASSET:PERCENT"
        raise ValueError(msg)
    asset, _, chain = target.partition("@")
    return LegSpec(to_asset=asset, to_chain=chain or None, percentage=pct)


@app.command()
def rebalance(
    holdings: Annotated[list[str], typer.Option("--holding", help="Current USD value as ASSET:USD (repeatable)")],
    targets: Annotated[
        list[str], typer.Option("--target", help="Target as ASSET:PERCENT or ASSET@CHAIN:PERCENT (repeatable)")
    ],
    threshold: Annotated[str, typer.Option("--threshold", help="Drift in percentage points before trading")] = "5",
    execute: Annotated[bool, typer.Option("--execute", help="Place the rebalancing swaps")] = False,
    settle_address: Annotated[str | None, typer.Option("--settle-address", "-a", help="Destination address")] = None,
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Compare USD holdings with target allocations and optionally rebalance."""
    cfg = _load_config(config)
    _setup_logging(cfg)
    try:
        values = {asset: Decimal(value) for asset, value in (_parse_holding(raw) for raw in holdings)}
        specs = [_parse_leg(raw) for raw in targets]
        allocations = [
            TargetAllocation(
                spec.to_asset.strip().upper(), spec.to_chain or cfg.batch.default_chain, Decimal(str(spec.percentage))
            )
            for spec in specs
        ]
        report = analyze_drift(values, allocations, Decimal(threshold))
    except (ValueError, InvalidOperation) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except ValidationError as exc:
        _fail(exc)

    for drift in report.drifts:
        typer.echo(
            f"{drift.asset:<6} {drift.recommendation.action.value:<4} "
            f"current={drift.current_percentage:.2f}% target={drift.target_percentage}%: "
            f"{drift.recommendation.explanation}"
        )
    if not report.needs_rebalance:
        typer.echo(f"Portfolio is within threshold (total drift {report.total_drift:.2f}%)")
        return
    if not execute:
        typer.echo("Rebalance needed; re-run with --execute to place the swaps")
        return

    orch = Orchestrator(config=cfg, db_path=db)
    try:
        portfolio = orch.batches.execute_rebalance(report, settle_address=settle_address)
    except TransientError as exc:
        _fail(exc)
    finally:
        orch.close()
    _print_legs(portfolio)


def _parse_holding(raw: str) -> tuple[str, str]:
    """Parse ``ASSET:USD``."""
    asset, sep, value = raw.rpartition(":")
    if not sep or not asset or not value:
        msg = f"Invalid holding {raw!r}; expected ASSET:USD"
        raise ValueError(msg)
    return asset.strip().upper(), value.strip()


def _print_legs(portfolio: list[PortfolioLeg]) -> None:
    for leg in portfolio:
        outcome = leg.quote.settle_amount if leg.quote is not None else leg.error_message
        typer.echo(f"{leg.id:<12} {leg.status.value:<8} {leg.amount} {leg.from_asset} -> {leg.to_asset}: {outcome}")
    summary = summarize(portfolio)
    typer.echo(f"Batch {summary.state.value}: {summary.succeeded}/{summary.total} legs succeeded")


@app.command()
def serve(
    config: ConfigOption = DEFAULT_CONFIG,
    db: DbOption = DEFAULT_DB,
    host: Annotated[str | None, typer.Option("--host", help="API bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", help="API port")] = None,
) -> None:
    """Start the HTTP API server."""
    cfg = _load_config(config)
    _setup_logging(cfg)

    resolved_host = host if host is not None else cfg.monitoring.api_host
    resolved_port = port if port is not None else cfg.monitoring.api_port

    orch = Orchestrator(config=cfg, db_path=db)
    try:
        import uvicorn  # noqa: PLC0415

        from swap_engine.api import create_app  # noqa: PLC0415

        fastapi_app = create_app(engine=orch.engine, batches=orch.batches)
        typer.echo(f"API starting on http://{resolved_host}:{resolved_port}")
        uvicorn.run(fastapi_app, host=resolved_host, port=resolved_port, log_level="info")
    except ImportError:
        typer.echo("The API requires optional dependencies: pip install swap-engine[api]")
        raise typer.Exit(code=1) from None
    finally:
        orch.close()
