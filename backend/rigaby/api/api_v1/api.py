from fastapi import APIRouter

from .endpoints import referrals, wallet

api_router = APIRouter()
api_router.include_router(wallet.router, prefix="/wallet", tags=["wallet"])
api_router.include_router(referrals.router, prefix="/referrals", tags=["referrals"])
