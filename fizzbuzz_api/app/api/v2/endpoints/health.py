"""
Readiness probe for API v2.

``GET /ready`` answers 200 with an empty body as soon as the
application has started and its statistics store is open.
"""

from fastapi import APIRouter, Depends, Response, status

from fizzbuzz_api.app.api.v2.endpoints.fizzbuzz import get_stats
from fizzbuzz_api.app.services.stats_service import StatsService

router = APIRouter()


@router.get("/ready", status_code=status.HTTP_200_OK, response_class=Response)
async def ready(stats: StatsService = Depends(get_stats)) -> Response:
    return Response(status_code=status.HTTP_200_OK)
