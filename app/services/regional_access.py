from typing import List, Optional, Sequence, Union

from app.core.exceptions import RestrictedRegionException
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.location_provider import LocationProvider
from app.core.utils import LoggerMixin
from app.schemas.login_schemas import LocationData

REGIONAL_CHECK_USER_ID = "regional_access_check"
DEFAULT_RESTRICTED_REGIONS = ("New York",)
REGION_RESTRICTED_COUNTRY = "us"


class RegionalAccessGuard(LoggerMixin):
    """
    Pre-authentication block for restricted countries and US regions.

    Runs before any user is known, so lookups use a placeholder identity.
    An unavailable lookup never blocks a request.
    """

    def __init__(
        self,
        location_provider: LocationProvider,
        timeout: Optional[float] = None,
        policy: Optional[FailurePolicy] = None,
    ):
        self.location_provider = location_provider
        self.timeout = timeout
        self.policy = policy or FailurePolicy()

    async def validate(
        self,
        client_ip: str,
        restricted_regions: Optional[Union[str, Sequence[str]]] = None,
        restricted_countries: Optional[Union[str, Sequence[str]]] = None,
        custom_message: Optional[str] = None,
        custom_type: Optional[str] = None,
    ) -> None:
        """
        Raise when ``client_ip`` resolves to a restricted place.

        Args:
            client_ip: Address of the request
            restricted_regions: US region or regions to block; defaults to New York
            restricted_countries: Country code or codes to block outright
            custom_message: Message for the rejection instead of the default
            custom_type: Error type for the rejection instead of the default

        Raises:
            RestrictedRegionException: naming the configured places of the
                list that matched
        """
        location: Optional[LocationData] = await self.policy.run(
            GuardedOperation.REGIONAL_LOOKUP,
            self.location_provider.lookup(client_ip, user_id=REGIONAL_CHECK_USER_ID),
            fallback=None,
            timeout=self.timeout,
            context={"ip_address": client_ip},
        )
        if location is None or location.is_empty:
            self.log_warning(
                {
                    "event_type": "regional_access_location_unknown",
                    "ip_address": client_ip,
                    "action": "allowed",
                }
            )
            return

        country = (location.country or "").lower()
        region = (location.region or "").lower()

        countries = _as_list(restricted_countries)
        if countries and country in {c.lower() for c in countries}:
            self._reject(", ".join(countries), client_ip, location, custom_message, custom_type)

        regions = _as_list(restricted_regions) or list(DEFAULT_RESTRICTED_REGIONS)
        if country == REGION_RESTRICTED_COUNTRY and region in {r.lower() for r in regions}:
            self._reject(", ".join(regions), client_ip, location, custom_message, custom_type)

    def _reject(
        self,
        restricted_places: str,
        client_ip: str,
        location: LocationData,
        custom_message: Optional[str],
        custom_type: Optional[str],
    ) -> None:
        self.log_security_event(
            {
                "event_type": "regional_access_blocked",
                "ip_address": client_ip,
                "restricted_places": restricted_places,
                "country": location.country,
                "region": location.region,
            }
        )
        raise RestrictedRegionException(restricted_places, custom_message, custom_type)


def _as_list(places: Optional[Union[str, Sequence[str]]]) -> List[str]:
    if not places:
        return []
    if isinstance(places, str):
        return [places]
    return list(places)
