from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from models.weather import ErrorPayload, LocationPayload, LocationSummaryPayload
from services.weather.service import ErrorCode, LocationSummary, RequestFailed, WeatherService

router = APIRouter(prefix="/weather", tags=["weather"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"

_ERROR_STATUS = {
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_weather_service(request: Request) -> WeatherService:
    return request.app.state.weather_governor.service


def error_response(failure: RequestFailed) -> JSONResponse:
    payload = ErrorPayload(
        error=failure.code.value,
        location=LocationPayload.from_location(failure.location) if failure.location else None,
    )
    return JSONResponse(content=payload.model_dump(mode="json", exclude_none=True), status_code=_ERROR_STATUS[failure.code])


def summary_line(summary: LocationSummary) -> str:
    return LocationSummaryPayload.from_summary(summary).model_dump_json(exclude_none=True) + "\n"


async def ndjson_lines(
    first: LocationSummary | None,
    rest: AsyncIterator[LocationSummary],
) -> AsyncIterator[str]:
    """Render summaries one per line; a failure after streaming started becomes a final error line."""
    if first is None:
        return
    yield summary_line(first)
    try:
        async for summary in rest:
            yield summary_line(summary)
    except RequestFailed as failure:
        yield ErrorPayload(error=failure.code.value).model_dump_json(exclude_none=True) + "\n"


async def first_or_none(summaries: AsyncIterator[LocationSummary]) -> LocationSummary | None:
    try:
        return await anext(summaries)
    except StopAsyncIteration:
        return None


__all__ = [
    "NDJSON_MEDIA_TYPE",
    "error_response",
    "first_or_none",
    "get_weather_service",
    "ndjson_lines",
    "router",
]
