"""
Top‑level router for version 2 of the API.

When new endpoints are added, update this file to include their
routers.
"""

from fastapi import APIRouter

from .endpoints import fizzbuzz, health

router = APIRouter()

# Both routers define their own full paths (``/fizzbuzz``,
# ``/fizzbuzz/stats``, ``/ready``), so no prefix here.
router.include_router(fizzbuzz.router, tags=["fizzbuzz"])
router.include_router(health.router, tags=["health"])
