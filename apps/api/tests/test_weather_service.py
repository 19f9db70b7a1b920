import asyncio
from pathlib import Path

import pytest

from core.openweather.client import OpenWeatherClient
from core.openweather.exceptions import ProviderError
from core.openweather.models import GeocodedPlace, OpenWeatherCredentials
from core.secrets import SecretFileRepository
from models.weather import LocationSummaryPayload
from services.weather.service import ErrorCode, RequestFailed
from weather_fakes import FakeProvider, InMemoryWeatherStore, build_service, collect, history_point, hours_ago


def test_add_location_reports_conflicts_with_the_existing_location() -> None:
    store = InMemoryWeatherStore()
    service = build_service(store, FakeProvider())

    created = asyncio.run(service.add_location("Seattle", 47.6062, -122.3321))
    assert created.location_id == "47.61,-122.33"

    for name, lat, lon in (("Seattle", 10.0, 10.0), ("Elsewhere", 47.6062, -122.3321), ("Rounded", 47.61, -122.33)):
        with pytest.raises(RequestFailed) as caught:
            asyncio.run(service.add_location(name, lat, lon))
        assert caught.value.code is ErrorCode.CONFLICT
        assert caught.value.location is not None
        assert caught.value.location.name == "Seattle"

    assert len(store.locations) == 1


def test_add_location_validates_input() -> None:
    service = build_service(InMemoryWeatherStore(), FakeProvider())

    with pytest.raises(ValueError):
        asyncio.run(service.add_location("   ", 1.0, 1.0))
    with pytest.raises(ValueError):
        asyncio.run(service.add_location("Nowhere", 91.0, 1.0))


def test_describe_location_accepts_id_or_name() -> None:
    store = InMemoryWeatherStore()
    service = build_service(store, FakeProvider())
    location = asyncio.run(service.add_location("Seattle", 47.6062, -122.3321))
    store.add_history([history_point(location.location_id, hours_ago(1), rain=2.0)])

    by_name = asyncio.run(service.describe_location("Seattle"))
    by_id = asyncio.run(service.describe_location(" 47.61,-122.33 "))

    assert by_name.location.location_id == by_id.location.location_id
    assert by_name.history.rain is not None
    assert by_name.history.rain.day == 2.0
    assert by_name.forecast is not None
    assert by_name.location.last_weather_time == hours_ago(1)


def test_describe_location_reports_not_found() -> None:
    service = build_service(InMemoryWeatherStore(), FakeProvider())

    with pytest.raises(RequestFailed) as caught:
        asyncio.run(service.describe_location("Atlantis"))

    assert caught.value.code is ErrorCode.NOT_FOUND
    assert caught.value.location is None


def test_list_locations_streams_every_location() -> None:
    store = InMemoryWeatherStore()
    service = build_service(store, FakeProvider())
    asyncio.run(service.add_location("Seattle", 47.6062, -122.3321))
    asyncio.run(service.add_location("Portland", 45.5152, -122.6784))

    summaries = asyncio.run(collect(service.list_locations()))

    assert [summary.location.name for summary in summaries] == ["Seattle", "Portland"]
    assert all(summary.forecast is None for summary in summaries)
    assert LocationSummaryPayload.from_summary(summaries[0]).model_dump(exclude_none=True) == {
        "location": {"id": "47.61,-122.33", "name": "Seattle", "lat": 47.6062, "lon": -122.3321}
    }


def test_list_locations_maps_provider_failures_to_internal() -> None:
    store = InMemoryWeatherStore()
    provider = FakeProvider()
    service = build_service(store, provider)
    asyncio.run(service.add_location("Seattle", 47.6062, -122.3321))
    provider.failing_coordinates.add((47.6062, -122.3321))

    with pytest.raises(RequestFailed) as caught:
        asyncio.run(collect(service.list_locations()))

    assert caught.value.code is ErrorCode.INTERNAL


def test_list_locations_maps_storage_failures_to_internal() -> None:
    store = InMemoryWeatherStore()
    service = build_service(store, FakeProvider())
    location = asyncio.run(service.add_location("Seattle", 47.6062, -122.3321))
    store.add_history([history_point(location.location_id, hours_ago(1))])
    store.fail_history_reads_for.add(location.location_id)

    with pytest.raises(RequestFailed) as caught:
        asyncio.run(collect(service.list_locations()))

    assert caught.value.code is ErrorCode.INTERNAL


def test_where_to_go_streams_summaries_with_distance() -> None:
    store = InMemoryWeatherStore()
    places = {"Seattle": [GeocodedPlace(name="Seattle", lat=47.6062, lon=-122.3321, country="US", state="WA")]}
    service = build_service(store, FakeProvider(places=places))
    asyncio.run(service.add_location("Tacoma", 47.2529, -122.4443))

    summaries = asyncio.run(collect(service.where_to_go("Seattle")))

    assert len(summaries) == 1
    payload = LocationSummaryPayload.from_summary(summaries[0]).model_dump(exclude_none=True)
    assert payload["location"]["name"] == "Tacoma"
    assert payload["forecast"] == {"rain": 0.0, "snow": 0.0}
    assert 35 < payload["distance_km"] < 45


def test_where_to_go_reports_unknown_places() -> None:
    service = build_service(InMemoryWeatherStore(), FakeProvider())

    with pytest.raises(RequestFailed) as caught:
        asyncio.run(collect(service.where_to_go("Atlantis")))

    assert caught.value.code is ErrorCode.NOT_FOUND


def test_missing_provider_key_is_reported_as_internal(tmp_path: Path) -> None:
    store = InMemoryWeatherStore()
    credentials = OpenWeatherCredentials("openweather_api_key", SecretFileRepository(tmp_path))
    service = build_service(store, OpenWeatherClient(credentials))  # type: ignore[arg-type]
    asyncio.run(store.insert_location("Seattle", 47.6062, -122.3321))

    with pytest.raises(RequestFailed) as caught:
        asyncio.run(service.describe_location("Seattle"))

    assert caught.value.code is ErrorCode.INTERNAL
    assert isinstance(caught.value.__cause__, ProviderError)
