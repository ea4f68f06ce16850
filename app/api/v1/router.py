from fastapi import APIRouter
from app.api.v1.endpoints import bookings, me, payments, billing, points

api_router = APIRouter()
api_router.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
api_router.include_router(me.router, prefix="/me", tags=["me"])
api_router.include_router(points.router, prefix="/points", tags=["points"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
