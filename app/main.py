"""
Kiosk checkout application entry point: FastAPI app, routers, lifespan, error handlers.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    force=True,
)

logger = logging.getLogger(__name__)


# ── Lifespan ──────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database on startup; cancel terminal watches on shutdown."""
    from app.database import init_db
    from app.services import terminal_poller

    init_db()
    logger.info("Database initialised")

    yield

    for intent_id in list(terminal_poller._active_tasks):
        terminal_poller.cancel_terminal_watch(intent_id)


app = FastAPI(title="Kiosk Checkout", description="Self-checkout payment core", lifespan=lifespan)

# ── CORS (kiosk frontend in development) ──────────────────

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

from app.errors import CheckoutError


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": -1, "error": exc.kind, "msg": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = f"{field}: {first.get('msg')}" if field else "invalid request"
    return JSONResponse(
        status_code=400,
        content={"code": -1, "error": "validation", "msg": msg},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error: %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"code": -1, "error": "internal", "msg": "internal server error"},
    )


# ── Routers ───────────────────────────────────────────────

from app.routes.orders import router as orders_router
from app.routes.payments import router as payments_router

app.include_router(orders_router)
app.include_router(payments_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
