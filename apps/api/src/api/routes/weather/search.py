from __future__ import annotations

from fastapi import Depends, Query
from fastapi.responses import StreamingResponse

from services.weather.service import RequestFailed, WeatherService

from .dependencies import NDJSON_MEDIA_TYPE, error_response, first_or_none, get_weather_service, ndjson_lines, router


@router.get("/where-to-go")
async def where_to_go(
    query: str = Query(min_length=1, max_length=200),
    service: WeatherService = Depends(get_weather_service),
):
    """Stream nearby locations with good recent weather as NDJSON."""
    summaries = service.where_to_go(query)
    try:
        first = await first_or_none(summaries)
    except RequestFailed as failure:
        return error_response(failure)
    return StreamingResponse(ndjson_lines(first, summaries), media_type=NDJSON_MEDIA_TYPE)
