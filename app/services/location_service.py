import asyncio
from typing import Dict, Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.login_security import LoginSecurityConfig
from app.core.exceptions import RestrictionErrorType, RestrictionException
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.location_provider import LocationProvider
from app.core.utils import LoggerMixin
from app.db.session import in_savepoint
from app.repositories.security_repo import CountryBanRepository, LoginEventRepository
from app.repositories.user_repo import UserRepository
from app.schemas.login_schemas import LastKnownLocation, LocationData, RiskCheckResult

VPN_REASON = "VPN usage detected"


class LocationRiskEvaluator(LoggerMixin):
    """
    Location, VPN and time-pattern risk for one login attempt.

    Holds a per-instance cache of provider results keyed by (user, IP); the
    evaluator is built per request so the provider is called at most once
    per attempt.
    """

    def __init__(
        self,
        db: AsyncSession,
        location_provider: LocationProvider,
        config: LoginSecurityConfig,
        policy: Optional[FailurePolicy] = None,
    ):
        self.location_provider = location_provider
        self.config = config
        self.db = db
        self.policy = policy or FailurePolicy()
        self.users = UserRepository(db)
        self.events = LoginEventRepository(db)
        self.bans = CountryBanRepository(db)
        self._cache: Dict[Tuple[str, str], Optional[LocationData]] = {}

    async def get_current_location(
        self, user_id: uuid.UUID, client_ip: str
    ) -> Optional[LocationData]:
        """
        Current location of the attempt, or None when it cannot be determined.

        Raises:
            RestrictionException: the resolved country is on the ban list
        """
        cache_key = (str(user_id), client_ip)
        if cache_key in self._cache:
            return self._cache[cache_key]

        location = await self.policy.run(
            GuardedOperation.LOCATION_LOOKUP,
            self._lookup(user_id, client_ip),
            fallback=None,
            context={"user_id": str(user_id)},
        )
        if location is not None and location.country:
            await self._enforce_country_ban(user_id, location.country)

        self._cache[cache_key] = location
        return location

    async def _lookup(self, user_id: uuid.UUID, client_ip: str) -> Optional[LocationData]:
        kyc = await in_savepoint(self.db, self.users.get_kyc_record(user_id))
        if kyc is None or not kyc.is_approved:
            return await self._provider_lookup(client_ip, user_id)
        # Approved accounts are looked up against their verified identity only
        if not kyc.provider_ref:
            return None
        return await self._provider_lookup(client_ip, user_id, kyc.provider_ref)

    async def _provider_lookup(
        self, client_ip: str, user_id: uuid.UUID, applicant_id: Optional[str] = None
    ) -> LocationData:
        # The timeout bounds the provider call only, never a database statement
        return await asyncio.wait_for(
            self.location_provider.lookup(
                client_ip, user_id=str(user_id), applicant_id=applicant_id
            ),
            timeout=self.config.provider_timeout_seconds,
        )

    async def _enforce_country_ban(self, user_id: uuid.UUID, country: str) -> None:
        ban = await self.policy.run(
            GuardedOperation.BAN_LIST_LOOKUP,
            in_savepoint(self.db, self.bans.is_country_banned(country)),
            fallback=None,
            context={"country": country},
        )
        if ban is None:
            return
        self.log_security_event(
            {
                "event_type": "banned_country_login",
                "user_id": str(user_id),
                "country": country,
                "reason": ban.reason,
            }
        )
        raise RestrictionException(
            RestrictionErrorType.ERR_COMPLIANCE_COUNTRY_BANNED,
            ban.reason or None,
            {"country": country},
        )

    async def get_last_known_location(
        self, user_id: uuid.UUID
    ) -> Optional[LastKnownLocation]:
        event = await self.events.get_last_known_location_event(user_id)
        if event is None:
            return None
        return LastKnownLocation(city=event.city, region=event.region, country=event.country)

    async def check_location(
        self, user_id: uuid.UUID, current: Optional[LocationData]
    ) -> RiskCheckResult:
        """
        Score the move from the last known location.

        Only the first differing tier counts: country, then region, then
        city. A tier is compared only when both sides have a value.
        """
        if current is None:
            return RiskCheckResult()

        last = await self.policy.run(
            GuardedOperation.LOCATION_HISTORY,
            in_savepoint(self.db, self.get_last_known_location(user_id)),
            fallback=None,
            context={"user_id": str(user_id)},
        )
        if last is None:
            self.log_info({"event_type": "location_first_login", "user_id": str(user_id)})
            return RiskCheckResult()

        scores = self.config.risk_scores
        if _differs(current.country, last.country):
            result = RiskCheckResult(
                score=scores.country_change, reason=f"new country ({current.country})"
            )
        elif _differs(current.region, last.region):
            result = RiskCheckResult(
                score=scores.region_change, reason=f"new region ({current.region})"
            )
        elif _differs(current.city, last.city):
            result = RiskCheckResult(
                score=scores.city_change, reason=f"new city ({current.city})"
            )
        else:
            result = RiskCheckResult()

        self.log_info(
            {
                "event_type": "location_check",
                "user_id": str(user_id),
                "score": result.score,
                "from": [last.country, last.region, last.city],
                "to": [current.country, current.region, current.city],
            }
        )
        return result

    def check_vpn(self, current: Optional[LocationData]) -> RiskCheckResult:
        if current is not None and current.is_vpn is True:
            return RiskCheckResult(score=self.config.risk_scores.vpn_usage, reason=VPN_REASON)
        return RiskCheckResult()

    def check_time_pattern(
        self, user_id: uuid.UUID, current: Optional[LocationData]
    ) -> RiskCheckResult:
        # TODO: impossible-travel scoring from distance and time since the last login event
        return RiskCheckResult()


def _differs(current: Optional[str], previous: Optional[str]) -> bool:
    return bool(current) and bool(previous) and current != previous
