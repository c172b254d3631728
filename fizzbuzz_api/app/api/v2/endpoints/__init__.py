"""
Endpoint subpackage for API v2.

Each module defines an APIRouter; the routers are aggregated in
``router.py`` at the package level.
"""
