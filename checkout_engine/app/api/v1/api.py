from fastapi import APIRouter

from checkout_engine.app.api.v1.endpoints import checkout

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(checkout.router, prefix="/checkout", tags=["checkout"])
