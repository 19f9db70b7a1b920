from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from models.weather import AddLocationRequest, LocationPayload, LocationSummaryPayload
from services.weather.service import RequestFailed, WeatherService

from .dependencies import NDJSON_MEDIA_TYPE, error_response, first_or_none, get_weather_service, ndjson_lines, router


@router.post("/locations", status_code=status.HTTP_201_CREATED, response_model=LocationPayload)
async def add_location(
    request: AddLocationRequest,
    service: WeatherService = Depends(get_weather_service),
):
    """Register a new location."""
    try:
        location = await service.add_location(request.name, request.lat, request.lon)
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    except RequestFailed as failure:
        return error_response(failure)
    return LocationPayload.from_location(location)


@router.get("/locations")
async def list_locations(service: WeatherService = Depends(get_weather_service)):
    """Stream every location with its recent precipitation as NDJSON."""
    summaries = service.list_locations()
    try:
        first = await first_or_none(summaries)
    except RequestFailed as failure:
        return error_response(failure)
    return StreamingResponse(ndjson_lines(first, summaries), media_type=NDJSON_MEDIA_TYPE)


@router.get("/locations/{key}", response_model=LocationSummaryPayload, response_model_exclude_none=True)
async def describe_location(key: str, service: WeatherService = Depends(get_weather_service)):
    """Summarize one location, looked up by id (e.g. 47.61,-122.33) or name."""
    try:
        summary = await service.describe_location(key)
    except RequestFailed as failure:
        return error_response(failure)
    return LocationSummaryPayload.from_summary(summary)
