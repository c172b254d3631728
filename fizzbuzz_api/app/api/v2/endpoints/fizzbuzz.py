"""
FizzBuzz endpoints for API v2.

``GET /fizzbuzz`` streams the FizzBuzz sequence of the configuration
given in the query string (``limit``, ``int1``, ``int2``, ``str1``,
``str2``; every parameter is optional and defaults to the classic
``10, 2, 3, "fizz", "buzz"``).  The request is counted in the
statistics only once the configuration has been validated, so
rejected requests never show up in ``GET /fizzbuzz/stats``.

``GET /fizzbuzz/stats`` reports the most requested configuration.
"""

import re
import time

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from fizzbuzz_api.app.core.config import Settings
from fizzbuzz_api.app.core.errors import StorageError
from fizzbuzz_api.app.schemas.fizzbuzz import (
    ErrorRead,
    FizzBuzzConfigRead,
    MostFrequentRead,
    StatsRead,
)
from fizzbuzz_api.app.services.fizzbuzz_service import (
    DEFAULT_CONFIG,
    MAX_INT,
    MIN_INT,
    FizzBuzzConfig,
    FizzBuzzSequence,
)
from fizzbuzz_api.app.services.stats_service import StatsService

router = APIRouter()

INT_PARAMS = ("limit", "int1", "int2")
STR_PARAMS = ("str1", "str2")

_INT_RE = re.compile(r"[+-]?[0-9]+")

JSON_MEDIA_TYPE = "application/json; charset=utf-8"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_stats(request: Request) -> StatsService:
    stats = request.app.state.stats
    if stats is None:
        raise StorageError("statistics store is not open")
    return stats


def _parse_int(key: str, raw: str) -> int:
    if not _INT_RE.fullmatch(raw):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'parsing {key} "{raw}": invalid syntax',
        )
    value = int(raw)
    if not MIN_INT <= value <= MAX_INT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'parsing {key} "{raw}": value out of range',
        )
    return value


def parse_config(request: Request) -> FizzBuzzConfig:
    """Build a configuration from the query string, filling in defaults.

    Unknown parameters and integers that are empty, malformed or do
    not fit in 64 bits are rejected with HTTP 400.  When a parameter
    is repeated the first value wins.
    """
    params = request.query_params
    values = DEFAULT_CONFIG.to_dict()
    unknown = sorted(key for key in params.keys() if key not in values)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'unexpected query parameter "{unknown[0]}"',
        )
    for key in INT_PARAMS:
        if key in params:
            values[key] = _parse_int(key, params.getlist(key)[0])
    for key in STR_PARAMS:
        if key in params:
            values[key] = params.getlist(key)[0]
    return FizzBuzzConfig(**values)


@router.get(
    "/fizzbuzz",
    response_class=StreamingResponse,
    responses={400: {"model": ErrorRead}},
)
async def fizzbuzz(
    config: FizzBuzzConfig = Depends(parse_config),
    stats: StatsService = Depends(get_stats),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Stream the FizzBuzz sequence as a JSON array of strings.

    Invalid divisors give HTTP 400 before anything is recorded or
    written.
    """
    sequence = FizzBuzzSequence(config)
    await run_in_threadpool(stats.increment, config, time.monotonic() + settings.request_timeout)
    return StreamingResponse(
        sequence.iter_json(time.monotonic() + settings.write_timeout),
        media_type=JSON_MEDIA_TYPE,
    )


@router.get(
    "/fizzbuzz/stats",
    response_model=StatsRead,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorRead}},
)
async def fizzbuzz_stats(
    request: Request,
    stats: StatsService = Depends(get_stats),
    settings: Settings = Depends(get_settings),
) -> StatsRead:
    """Return the most requested configuration and its request count.

    ``config`` is left out while no request has been counted.  Among
    configurations requested equally often the smallest one is
    reported.
    """
    if request.url.query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="this endpoint takes no parameters",
        )
    count, config = await run_in_threadpool(
        stats.most_frequent, time.monotonic() + settings.request_timeout
    )
    most_frequent = MostFrequentRead(
        count=count,
        config=FizzBuzzConfigRead.from_config(config) if config is not None else None,
    )
    return StatsRead(most_frequent=most_frequent)
