"""``get_weather`` handler backed by OpenWeatherMap."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from orbit_bridge._exceptions import ToolExecutionError
from orbit_bridge.types import ToolContext

from .base import HttpToolMixin, ProgressReporter

OWM_BASE_URL = "https://api.openweathermap.org"
IP_LOOKUP_URL = "http://ip-api.com/json/{ip}"

# OpenWeatherMap calls kelvin output "standard".
_UNITS = {"metric": "metric", "imperial": "imperial", "kelvin": "standard"}


class WeatherLookup(HttpToolMixin):
    name = "get_weather"

    def __init__(
        self,
        api_key: Optional[str],
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = OWM_BASE_URL,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.logger = logger or logging.getLogger(__name__)

    async def __call__(
        self,
        args: dict[str, Any],
        context: ToolContext,
        report: ProgressReporter,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise ToolExecutionError("OpenWeatherMap API key not configured")

        units = str(args.get("units") or "metric").lower()
        if units not in _UNITS:
            units = "metric"
        language = str(args.get("language") or "ko").lower()
        city = str(args.get("city") or "").strip()

        try:
            if city:
                await report(f"Locating {city}")
                lat, lon = await self.geocode(city)
            else:
                await report("Locating the user from their IP address")
                lat, lon = await self.locate_ip(context.client_ip or "127.0.0.1")

            await report("Fetching current weather")
            data = await self.get_json(
                f"{self.base_url}/data/2.5/weather",
                params={"lat": lat, "lon": lon, "appid": self.api_key, "units": _UNITS[units], "lang": language},
            )
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"Weather lookup failed: {exc}", exc) from exc

        main = data.get("main") or {}
        wind = data.get("wind") or {}
        weather = (data.get("weather") or [{}])[0]
        return {
            "location": {
                "name": data.get("name"),
                "country": (data.get("sys") or {}).get("country"),
                "latitude": lat,
                "longitude": lon,
            },
            "current": {
                "temperature": round(main["temp"]) if "temp" in main else None,
                "description": weather.get("description"),
                "feels_like": round(main["feels_like"]) if "feels_like" in main else None,
                "humidity": main.get("humidity"),
                "wind_speed": wind.get("speed"),
                "wind_direction": wind.get("deg"),
            },
            "units": units,
            "source": "OpenWeatherMap",
        }

    async def geocode(self, city: str) -> tuple[float, float]:
        found = await self.get_json(
            f"{self.base_url}/geo/1.0/direct",
            params={"q": city, "limit": 1, "appid": self.api_key},
        )
        if not found:
            raise ToolExecutionError(f"City not found: {city}")
        return found[0]["lat"], found[0]["lon"]

    async def locate_ip(self, ip: str) -> tuple[float, float]:
        found = await self.get_json(IP_LOOKUP_URL.format(ip=ip))
        if not isinstance(found, dict) or found.get("status") != "success":
            message = found.get("message") if isinstance(found, dict) else None
            raise ToolExecutionError(
                f"Could not determine a location for IP {ip}: {message or 'lookup failed'}. "
                "Ask the user for a city."
            )
        self.logger.debug("IP %s located in %s", ip, found.get("city"))
        return found["lat"], found["lon"]
