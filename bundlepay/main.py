"""
BundlePay application entry: FastAPI instance, router registration,
error handlers, lifespan and background reconciliation.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bundlepay.errors import ServiceError

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)

RECONCILE_INTERVAL_SECONDS = 120
RECONCILE_AGE_MINUTES = 5


# ── Background tasks ──────────────────────────────────────

async def _reconcile_task() -> None:
    """Re-verify stale pending payment transactions every 120 seconds."""
    from bundlepay.services.settlement import SettlementEngine

    engine = SettlementEngine()
    while True:
        try:
            results = await asyncio.to_thread(
                engine.reconcile_pending, RECONCILE_AGE_MINUTES
            )
            if results:
                logger.info("Reconciled %d pending transaction(s)", len(results))
        except Exception as e:
            logger.error("Pending transaction reconciliation failed: %s", e)
        await asyncio.sleep(RECONCILE_INTERVAL_SECONDS)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database on startup and start background tasks."""
    from bundlepay.database import init_db

    init_db()
    logger.info("Database initialised")

    tasks = []
    if os.environ.get("TESTING") != "1":
        tasks.append(asyncio.create_task(_reconcile_task()))
        logger.info("Background task started: pending transaction reconciliation")

    yield

    for t in tasks:
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass


app = FastAPI(title="BundlePay", description="Mobile data bundle reselling platform", lifespan=lifespan)

# ── CORS (development) ────────────────────────────────────

if os.environ.get("CORS_ENABLED", "0") == "1":
    from fastapi.middleware.cors import CORSMiddleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ── Error handlers ────────────────────────────────────────

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    msg = "Internal server error"
    if os.environ.get("DEBUG") == "1":
        msg = f"{msg}: {exc}"
    return JSONResponse(status_code=500, content={"code": -1, "msg": msg})


# ── Routers ───────────────────────────────────────────────

from bundlepay.routes.vendor import router as vendor_router
from bundlepay.routes.storefront import router as storefront_router
from bundlepay.routes.payment import router as payment_router
from bundlepay.routes.withdrawals import router as withdrawals_router
from bundlepay.routes.admin import router as admin_router

app.include_router(vendor_router)
app.include_router(storefront_router)
app.include_router(payment_router)
app.include_router(withdrawals_router)
app.include_router(admin_router)


# ── Health ────────────────────────────────────────────────

@app.get("/health")
async def health_check():
    return {"status": "ok"}
