"""Coins endpoint."""
from fastapi import APIRouter

from src.core.coins.registry import list_coins

router = APIRouter(tags=["Coins"])


@router.get("/coins")
async def get_coins():
    """List all supported coins."""
    return list_coins()
