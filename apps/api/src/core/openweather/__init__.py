from core.openweather.client import OpenWeatherClient
from core.openweather.exceptions import ProviderError
from core.openweather.models import GeocodedPlace, OpenWeatherCredentials
from core.openweather.provider import WeatherProvider

__all__ = [
    "GeocodedPlace",
    "OpenWeatherClient",
    "OpenWeatherCredentials",
    "ProviderError",
    "WeatherProvider",
]
