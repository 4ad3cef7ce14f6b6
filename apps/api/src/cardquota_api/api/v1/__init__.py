from fastapi import APIRouter

from .endpoints import calculation, health, quota, rewards, transactions

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(quota.router)
router.include_router(transactions.router)
router.include_router(calculation.router)
router.include_router(rewards.router)
