from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from checkout_engine.app.api.v1.api import api_router
from checkout_engine.app.core.config import settings
from checkout_engine.app.core.logging_config import configure_logging

configure_logging()

app = FastAPI(title="School Storefront Checkout Engine")

# ─── CORS: cashier UI origins only ────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "X-Cashier-Session",
        "X-Employee-Id",
    ],
)

app.include_router(api_router)
