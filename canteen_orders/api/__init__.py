"""
API routes and endpoints.
"""

from fastapi import APIRouter
from .v1 import orders

api_router = APIRouter()

api_router.include_router(orders.router, tags=["orders"])
