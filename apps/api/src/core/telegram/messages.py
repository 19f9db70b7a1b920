from __future__ import annotations

from services.weather.models import Location
from services.weather.service import ErrorCode, LocationSummary
from services.weather.summary import PrecipitationTotals

MARKDOWN_V2_SPECIAL_CHARACTERS = set(
    "\\_*[]()~`>#+-=|{}.!"
)  # Telegram Markdown V2 reserved characters.

ERROR_MESSAGES = {
    ErrorCode.CONFLICT: "⚠️ That location is already registered\\.",
    ErrorCode.NOT_FOUND: "🤷 I couldn't find that place\\.",
    ErrorCode.INTERNAL: "💥 Something went wrong, please try again later\\.",
}


def escape_markdown_v2(value: str) -> str:
    """Escape Telegram MarkdownV2-reserved characters within the provided text."""
    escaped_characters: list[str] = []

    for character in value:
        if character in MARKDOWN_V2_SPECIAL_CHARACTERS:
            escaped_characters.append(f"\\{character}")
        else:
            escaped_characters.append(character)

    return "".join(escaped_characters)


def _format_mm(value: float) -> str:
    return escape_markdown_v2(f"{value:.1f}mm")


def _format_totals(label: str, totals: PrecipitationTotals) -> str:
    return (
        f"{label} day {_format_mm(totals.day)}, "
        f"week {_format_mm(totals.week)}, "
        f"month {_format_mm(totals.month)}"
    )


def format_location(location: Location) -> str:
    return f"📍 *{escape_markdown_v2(location.name)}* \\({escape_markdown_v2(location.location_id)}\\)"


def format_location_summary(summary: LocationSummary) -> str:
    lines = [format_location(summary.location)]
    if summary.distance_m is not None:
        lines.append(f"📏 {escape_markdown_v2(f'{summary.distance_m / 1000:.0f}km away')}")

    history = summary.history
    if history.rain is None and history.snow is None:
        lines.append("☀️ No rain or snow in the last four weeks")
    if history.rain is not None:
        lines.append(_format_totals("🌧️ Rain:", history.rain))
    if history.snow is not None:
        lines.append(_format_totals("❄️ Snow:", history.snow))

    if summary.forecast is not None:
        lines.append(
            f"🔮 Next 48h: rain {_format_mm(summary.forecast.rain)}, snow {_format_mm(summary.forecast.snow)}"
        )
    return "\n".join(lines)


def format_error(code: ErrorCode, location: Location | None = None) -> str:
    message = ERROR_MESSAGES[code]
    if location is not None:
        message = f"{message}\n{format_location(location)}"
    return message
