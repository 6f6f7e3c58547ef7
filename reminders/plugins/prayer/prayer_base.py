import requests
from datetime import date
from typing import Dict, Any, Optional
import logging
import re
from abc import ABC, abstractmethod
from reminders.core.cache_helper import CacheHelper

PRAYER_NAMES = ('Fajr', 'Dhuhr', 'Asr', 'Maghrib', 'Isha')

_HH_MM_RE = re.compile(r'(\d{1,2}):(\d{2})')


class PrayerBackend(ABC):
    """Base class for prayer time backends"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.cache_helper = CacheHelper(config.get('cache_dir'), "prayer_times")

    @abstractmethod
    def get_prayer_times(self, day: date, force_fetch: bool = False) -> Optional[Dict[str, str]]:
        """Get prayer times for a date
        Args:
            day: Calendar date to look up
            force_fetch: If True, bypass cache and fetch fresh data
        Returns:
            {prayer name: "HH:MM"} or None on error
        """
        pass


class AladhanBackend(PrayerBackend):
    """Prayer times backend using api.aladhan.com (timings by city)"""

    BASE_URL = "https://api.aladhan.com/v1/timingsByCity"
    TIMEOUT = 10

    def get_prayer_times(self, day: date, force_fetch: bool = False) -> Optional[Dict[str, str]]:
        city = self.config.get('city', 'Cairo')
        country = self.config.get('country', 'Egypt')
        cache_key = f"pt_{city}_{country}_{day.isoformat()}"
        try:
            if not force_fetch:
                # Times for a past or future date never change, any age is fine
                cached_times = self.cache_helper.get_cached_content(cache_key, max_age_days=None)
                if cached_times:
                    self.logger.debug(f"Got prayer times for {day} from cache")
                    return cached_times

            prayer_times = self._get_api_prayer_times(day, city, country)
            if prayer_times:
                self.cache_helper.save_to_cache(cache_key, prayer_times)
            return prayer_times

        except Exception as e:
            self.logger.error(f"Error fetching prayer times for {day}: {e}")
            return None

    def _get_api_prayer_times(self, day: date, city: str, country: str) -> Optional[Dict[str, str]]:
        url = f"{self.BASE_URL}/{day.strftime('%d-%m-%Y')}"
        params = {
            'city': city,
            'country': country,
            'method': self.config.get('calculation_method', 5),
        }

        self.logger.info(f"Making API request to {url} with params {params}")
        response = requests.get(url, params=params, timeout=self.TIMEOUT)
        response.raise_for_status()
        data = response.json()

        payload = data.get('data') if isinstance(data, dict) else None
        timings = payload.get('timings') if isinstance(payload, dict) else None
        timings = timings if isinstance(timings, dict) else {}
        prayer_times = {}
        for prayer in PRAYER_NAMES:
            value = _clean_time(timings.get(prayer))
            if value:
                prayer_times[prayer] = value

        if not prayer_times:
            self.logger.warning(f"No prayer timings in API response for {day}")
            return None
        self.logger.info(f"Prayer times for {day}: {prayer_times}")
        return prayer_times


def _clean_time(value: Any) -> Optional[str]:
    """'05:12 (EET)' -> '05:12'"""
    if not isinstance(value, str):
        return None
    match = _HH_MM_RE.search(value)
    if not match:
        return None
    return f"{int(match.group(1)):02d}:{match.group(2)}"


_BACKENDS = {
    'aladhan': AladhanBackend,
}


def create_backend(config: Dict[str, Any]) -> Optional[PrayerBackend]:
    """Backend named by config['backend'] (default aladhan), or None when unknown."""
    backend_type = config.get('backend', 'aladhan')
    backend_cls = _BACKENDS.get(backend_type)
    if backend_cls is None:
        logging.getLogger(__name__).warning(f"Unknown prayer backend: {backend_type}")
        return None
    return backend_cls(config)
