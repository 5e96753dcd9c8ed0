"""
Observability server for health checks and metrics.

Provides HTTP endpoints for monitoring the dispute sync service health,
metrics, and operational status.
"""

import logging
import threading
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from sqlalchemy import func, select, text

from dispute_mirror.config.loader import cfg
from dispute_mirror.db.deps import get_session
from dispute_mirror.db.models import PayPalAccount, SyncLog
from dispute_mirror.db.sync_state import STATUS_SUCCESS

logger = logging.getLogger(__name__)

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Sync metrics
sync_runs_total = Counter(
    "sync_runs_total", "Total number of account sync runs", ["account", "status"], registry=REGISTRY
)

sync_duration_seconds = Histogram(
    "sync_duration_seconds", "Account sync duration in seconds", ["account"], registry=REGISTRY
)

disputes_upserted_total = Counter(
    "disputes_upserted_total",
    "Total number of disputes written",
    ["operation"],
    registry=REGISTRY,
)

dispute_status_changes_total = Counter(
    "dispute_status_changes_total",
    "Total number of dispute status changes recorded in history",
    registry=REGISTRY,
)

# System metrics
scheduler_running = Gauge(
    "scheduler_running", "Whether the scheduler is running", registry=REGISTRY
)

database_connection_healthy = Gauge(
    "database_connection_healthy", "Database connection health status", registry=REGISTRY
)

account_sync_healthy = Gauge(
    "account_sync_healthy",
    "Whether the account had a successful sync recently",
    ["account"],
    registry=REGISTRY,
)

# Global state
_scheduler_running = False
_app_start_time = datetime.now(UTC)


def set_scheduler_running(running: bool) -> None:
    """Update scheduler running status."""
    global _scheduler_running
    _scheduler_running = running
    scheduler_running.set(1 if running else 0)


def check_database_health() -> bool:
    """Check database connectivity."""
    try:
        with get_session() as session:
            session.execute(text("SELECT 1")).fetchone()
        database_connection_healthy.set(1)
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connection_healthy.set(0)
        return False


def get_account_sync_states(max_age: timedelta | None = None) -> dict[str, dict[str, Any]]:
    """Last successful sync per active account and whether it is recent enough."""
    if max_age is None:
        max_age = timedelta(hours=cfg("observability.max_sync_age_hours", 24))
    cutoff = datetime.now(UTC) - max_age

    last_success = (
        select(SyncLog.paypal_account_id, func.max(SyncLog.completed_at).label("completed_at"))
        .where(SyncLog.status == STATUS_SUCCESS)
        .group_by(SyncLog.paypal_account_id)
        .subquery()
    )

    states = {}
    with get_session() as session:
        rows = session.execute(
            select(PayPalAccount.id, PayPalAccount.account_name, last_success.c.completed_at)
            .outerjoin(last_success, last_success.c.paypal_account_id == PayPalAccount.id)
            .where(PayPalAccount.active.is_(True))
        ).all()

    for account_id, account_name, completed_at in rows:
        if completed_at is not None and completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=UTC)
        healthy = completed_at is not None and completed_at >= cutoff
        account_sync_healthy.labels(account=account_id).set(1 if healthy else 0)
        states[account_id] = {
            "account_name": account_name,
            "last_success_at": completed_at.isoformat() if completed_at else None,
            "healthy": healthy,
        }
    return states


def get_health_status() -> dict[str, Any]:
    """Get comprehensive health status."""
    db_healthy = check_database_health()

    sync_states = {}
    if db_healthy:
        try:
            sync_states = get_account_sync_states()
        except Exception as e:
            logger.error(f"Failed to get account sync states: {e}")

    overall_healthy = (
        db_healthy
        and _scheduler_running
        and all(state["healthy"] for state in sync_states.values())
    )

    return {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_seconds": (datetime.now(UTC) - _app_start_time).total_seconds(),
        "checks": {
            "database": "healthy" if db_healthy else "unhealthy",
            "scheduler": "running" if _scheduler_running else "stopped",
        },
        "accounts": sync_states,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager."""
    logger.info("Starting observability server")
    yield
    logger.info("Stopping observability server")


app = FastAPI(
    title="Dispute Mirror",
    description="Observability endpoints for the PayPal dispute sync service",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/healthz")
def health_check():
    """Health check endpoint."""
    health = get_health_status()

    if health["status"] == "healthy":
        return health
    raise HTTPException(status_code=503, detail=health)


@app.get("/metrics")
def metrics():
    """Prometheus metrics endpoint."""
    check_database_health()
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
def root():
    """Root endpoint with service info."""
    return {
        "service": "Dispute Mirror",
        "version": "1.0.0",
        "timestamp": datetime.now(UTC).isoformat(),
        "endpoints": ["/healthz", "/metrics"],
    }


def start_observability_server(port: int = 8000) -> threading.Thread | None:
    """
    Start the observability server in a background thread.

    Returns:
        Thread handle, or None when disabled by configuration
    """
    if not cfg("observability.metrics.enabled", True):
        logger.info("Observability server disabled by configuration")
        return None

    port = cfg("observability.metrics.port", port)
    host = cfg("observability.metrics.host", "0.0.0.0")
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))

    thread = threading.Thread(target=server.run, name="observability", daemon=True)
    thread.start()
    logger.info(f"Observability server listening on {host}:{port}")
    return thread


# Metrics helpers for use by the sync runners
def record_sync_result(account: str, result: dict[str, Any]) -> None:
    """Record metrics for one finished account sync (a dumped SyncResult)."""
    status = "success" if result.get("success") else "error"
    sync_runs_total.labels(account=account, status=status).inc()
    if result.get("duration_seconds") is not None:
        sync_duration_seconds.labels(account=account).observe(result["duration_seconds"])
    record_upsert_operation(result.get("created", 0), result.get("updated", 0))
    if result.get("status_changes"):
        dispute_status_changes_total.inc(result["status_changes"])


def record_upsert_operation(inserted: int, updated: int) -> None:
    """Record upsert operation metrics."""
    if inserted > 0:
        disputes_upserted_total.labels(operation="insert").inc(inserted)
    if updated > 0:
        disputes_upserted_total.labels(operation="update").inc(updated)
