"""
Delivery pricing: pincode validation, zone resolution against the business
origin, zone charges and the free-shipping threshold.
"""
import asyncio
import math
import re
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol, Tuple

import aiohttp
from sqlalchemy import select

from core.database import utc_now
from core.exceptions import InvalidPincodeException, NotFoundException
from core.logging import get_structured_logger
from core.utils.money import round_money, to_decimal, ZERO
from models.delivery import DeliverySettings
from schemas.delivery import (
    DeliveryCharge, DeliveryQuote, DeliveryZone, DeliverySettingsResponse,
    DeliverySettingsUpdate, PincodeLocation,
)

logger = get_structured_logger(__name__)

PINCODE_PATTERN = re.compile(r"[0-9]{6}")
EARTH_RADIUS_KM = 6371.0

ESTIMATED_DELIVERY_DAYS = {
    DeliveryZone.LOCAL: 1,
    DeliveryZone.CITY: 2,
    DeliveryZone.STATE: 3,
    DeliveryZone.NATIONAL: 5,
    DeliveryZone.FREE_SHIPPING: 2,
    DeliveryZone.STANDARD: 5,
}


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _same_place(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b and a.strip().casefold() == b.strip().casefold())


class PincodeLookup(Protocol):
    async def lookup(self, pincode: str) -> Optional[PincodeLocation]:
        """Resolve a pincode, or None when the location cannot be determined."""
        ...


class NominatimPincodeLookup:
    """Postal code lookup against an OpenStreetMap Nominatim search endpoint."""

    def __init__(self, base_url: str, timeout_seconds: float = 5, user_agent: str = "order-core",
                 country: str = "India"):
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.user_agent = user_agent
        self.country = country
        self._cache: Dict[str, PincodeLocation] = {}

    async def lookup(self, pincode: str) -> Optional[PincodeLocation]:
        if pincode in self._cache:
            return self._cache[pincode]

        params = {
            "postalcode": pincode,
            "country": self.country,
            "format": "json",
            "addressdetails": "1",
            "limit": "1",
        }
        try:
            async with aiohttp.ClientSession(timeout=self.timeout,
                                             headers={"User-Agent": self.user_agent}) as session:
                async with session.get(self.base_url, params=params) as response:
                    if response.status != 200:
                        logger.warning(
                            message="Pincode lookup returned an error status",
                            metadata={"pincode": pincode, "status": response.status},
                        )
                        return None
                    results = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(
                message="Pincode lookup failed",
                metadata={"pincode": pincode},
                exception=e,
            )
            return None

        location = self._parse(results)
        if location:
            self._cache[pincode] = location
        return location

    @staticmethod
    def _parse(results) -> Optional[PincodeLocation]:
        if not results:
            return None
        first = results[0]
        address = first.get("address", {})
        city = (address.get("city") or address.get("town") or address.get("village")
                or address.get("state_district") or address.get("county"))
        state = address.get("state")
        if not city or not state:
            return None
        try:
            latitude = float(first["lat"])
            longitude = float(first["lon"])
        except (KeyError, TypeError, ValueError):
            latitude = longitude = None
        return PincodeLocation(city=city, state=state, latitude=latitude, longitude=longitude)


class DeliveryService:
    """
    Long-lived delivery pricing engine.

    Settings are cached per instance for `cache_ttl_seconds`; updating them
    through this service drops the cache immediately. Sessions are opened per
    call from `session_factory`, so one instance can serve every request.
    """

    def __init__(
        self,
        session_factory,
        pincode_lookup: PincodeLookup,
        cache_ttl_seconds: float = 300,
        local_radius_km: float = 10,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.pincode_lookup = pincode_lookup
        self.cache_ttl_seconds = cache_ttl_seconds
        self.local_radius_km = local_radius_km
        self.clock = clock
        self.timer = timer
        self._cached_settings: Optional[DeliverySettingsResponse] = None
        self._cache_timestamp = 0.0
        self._cache_lock = asyncio.Lock()

    @staticmethod
    def is_valid_pincode(pincode: Optional[str]) -> bool:
        return bool(pincode) and bool(PINCODE_PATTERN.fullmatch(pincode))

    def clear_cache(self) -> None:
        self._cached_settings = None
        self._cache_timestamp = 0.0

    def _cache_is_fresh(self) -> bool:
        return (self._cached_settings is not None
                and self.timer() - self._cache_timestamp < self.cache_ttl_seconds)

    async def get_delivery_settings(self) -> DeliverySettingsResponse:
        if self._cache_is_fresh():
            return self._cached_settings

        async with self._cache_lock:
            if self._cache_is_fresh():
                return self._cached_settings

            async with self.session_factory() as session:
                row = await self._load_settings_row(session)
                if row is None:
                    raise NotFoundException("Delivery settings are not configured",
                                            resource="delivery_settings")
                settings = DeliverySettingsResponse.model_validate(row)

            self._cached_settings = settings
            self._cache_timestamp = self.timer()
            return settings

    @staticmethod
    async def _load_settings_row(session) -> Optional[DeliverySettings]:
        result = await session.execute(
            select(DeliverySettings).order_by(DeliverySettings.created_at.desc()).limit(1))
        return result.scalars().first()

    async def update_delivery_settings(self, updates: DeliverySettingsUpdate,
                                       updated_by: str) -> DeliverySettingsResponse:
        """Persist changes (creating the settings row on first use) and drop the cache."""
        values = updates.model_dump(exclude_unset=True)

        async with self.session_factory() as session:
            row = await self._load_settings_row(session)
            if row is None:
                missing = [f for f in ("business_city", "business_state") if not values.get(f)]
                if missing:
                    raise NotFoundException(
                        "Delivery settings are not configured; business_city and business_state are required",
                        resource="delivery_settings")
                row = DeliverySettings(created_at=self.clock())
                session.add(row)

            for key, value in values.items():
                setattr(row, key, value)
            row.updated_by = updated_by
            row.updated_at = self.clock()

            await session.commit()
            await session.refresh(row)
            result = DeliverySettingsResponse.model_validate(row)

        self.clear_cache()
        logger.log_business_event(
            "delivery_settings_updated", {"fields": sorted(values)}, user_id=updated_by)
        return result

    async def calculate_delivery_charge(self, pincode: str, order_subtotal: Decimal) -> DeliveryCharge:
        """
        Charge for delivering an order of `order_subtotal` to `pincode`.

        Free shipping (subtotal >= threshold, inclusive) short-circuits zone
        resolution. Otherwise the zone is local/city/state/national relative
        to the business origin; a failed postal lookup prices as national.
        """
        if not self.is_valid_pincode(pincode):
            raise InvalidPincodeException("Invalid pincode format")

        settings = await self.get_delivery_settings()
        order_subtotal = to_decimal(order_subtotal)

        if self._qualifies_for_free_shipping(settings, order_subtotal):
            return DeliveryCharge(charge=ZERO, is_free_shipping=True, zone=DeliveryZone.FREE_SHIPPING)

        zone, charge = await self._calculate_zone_charge(pincode, settings)
        return DeliveryCharge(charge=round_money(charge), is_free_shipping=False, zone=zone)

    @staticmethod
    def _qualifies_for_free_shipping(settings: DeliverySettingsResponse, subtotal: Decimal) -> bool:
        return settings.free_shipping_enabled and subtotal >= settings.free_shipping_threshold

    async def _calculate_zone_charge(self, pincode: str,
                                     settings: DeliverySettingsResponse) -> Tuple[DeliveryZone, Decimal]:
        location = await self.pincode_lookup.lookup(pincode)
        if location is None:
            return DeliveryZone.NATIONAL, settings.national_delivery_charge

        if not _same_place(location.state, settings.business_state):
            return DeliveryZone.NATIONAL, settings.national_delivery_charge

        if not _same_place(location.city, settings.business_city):
            return DeliveryZone.STATE, settings.state_delivery_charge

        coordinates = (settings.business_latitude, settings.business_longitude,
                       location.latitude, location.longitude)
        # Without coordinates on both sides the distance is unknown; price as city.
        if any(c is None for c in coordinates) or haversine_km(*coordinates) > self.local_radius_km:
            return DeliveryZone.CITY, settings.city_delivery_charge

        return DeliveryZone.LOCAL, settings.local_delivery_charge

    async def quote_delivery(self, pincode: str, order_subtotal: Decimal) -> DeliveryQuote:
        """
        Checkout quote with an estimated delivery date.

        An invalid pincode still raises; any other pricing failure degrades
        to the national charge under the "standard" zone.
        """
        try:
            result = await self.calculate_delivery_charge(pincode, order_subtotal)
            is_standard = False
        except InvalidPincodeException:
            raise
        except Exception as e:
            logger.warning(
                message="Delivery calculation failed, using standard charge",
                metadata={"pincode": pincode},
                exception=e,
            )
            settings = await self.get_delivery_settings()
            is_free = self._qualifies_for_free_shipping(settings, to_decimal(order_subtotal))
            result = DeliveryCharge(
                charge=ZERO if is_free else settings.national_delivery_charge,
                is_free_shipping=is_free,
                zone=DeliveryZone.STANDARD,
            )
            is_standard = True

        days = ESTIMATED_DELIVERY_DAYS.get(result.zone, 3)
        return DeliveryQuote(
            **result.model_dump(),
            estimated_delivery_days=days,
            estimated_delivery_date=(self.clock() + timedelta(days=days)).date(),
            is_standard_charge=is_standard,
        )
