from __future__ import annotations
# File: apps/rotafrete/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# --- Local Imports ---
from .settings import settings
from .scheduler import SchedulerWrapper

# Routers
from .auth import router as auth_router
from .catalog import router as catalog_router
from .plans import router as plans_router, expire_plans_job
from .freights import router as freights_router
from .return_trips import router as return_trips_router
from .collaborators import router as collaborators_router
from .notifications import router as notifications_router, delete_old_notifications_job
from .support import router as support_router
from .admin import router as admin_router
from .route_optimizer import router as optimizer_router
from .payments import billing_router, router as payments_router

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = SchedulerWrapper()


# --- FastAPI App ---

app = FastAPI(title="RotaFrete API")

app.add_middleware(
    CORSMiddleware,
    # Explicit origins are required when using credentials (Authorization headers).
    allow_origins=list({
        str(settings.FRONTEND_BASE_URL or "").rstrip("/"),
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:9002",
    } - {""}),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Core Endpoints ---

@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(catalog_router)
app.include_router(plans_router)
app.include_router(freights_router)
app.include_router(return_trips_router)
app.include_router(collaborators_router)
app.include_router(notifications_router)
app.include_router(support_router)
app.include_router(admin_router)
app.include_router(optimizer_router)
app.include_router(payments_router)
app.include_router(billing_router)


@app.on_event("startup")
def startup_events():
    scheduler.start()
    scheduler.add_interval_job(expire_plans_job, minutes=settings.PLAN_EXPIRY_CHECK_MINUTES, id="plan_expiry")
    logger.info("Plan expiry job scheduled every %s minute(s)", settings.PLAN_EXPIRY_CHECK_MINUTES)
    scheduler.add_interval_job(delete_old_notifications_job, minutes=24 * 60, id="notification_cleanup")


@app.on_event("shutdown")
def shutdown_events():
    scheduler.shutdown()
