import uuid

from app.core.utils import LoggerMixin
from app.schemas.login_schemas import RiskAssessment, RiskPolicy, SecurityContext
from app.services.device_trust_service import DeviceTrustRegistry
from app.services.location_service import LocationRiskEvaluator


class RiskAggregator(LoggerMixin):
    """Sums the device, location, VPN and time-pattern signals of one attempt."""

    def __init__(self, devices: DeviceTrustRegistry, locations: LocationRiskEvaluator):
        self.devices = devices
        self.locations = locations

    async def assess(
        self,
        user_id: uuid.UUID,
        context: SecurityContext,
        policy: RiskPolicy = RiskPolicy(),
    ) -> RiskAssessment:
        """
        Assess the attempt's risk.

        Args:
            user_id: Account being logged into
            context: Client IP and device fingerprint of the attempt
            policy: ``bypass`` skips every lookup and scores 0

        Returns:
            RiskAssessment with the summed score, the reasons in signal order
            and the location fetched for the attempt

        Raises:
            RestrictionException: the attempt comes from a banned country
        """
        if policy.bypass:
            return RiskAssessment()

        device_risk = await self.devices.check_device(user_id, context.fingerprint)
        location = await self.locations.get_current_location(user_id, context.client_ip)
        location_risk = await self.locations.check_location(user_id, location)
        vpn_risk = self.locations.check_vpn(location)
        time_risk = self.locations.check_time_pattern(user_id, location)

        checks = [device_risk, location_risk, vpn_risk, time_risk]
        assessment = RiskAssessment(
            score=sum(check.score for check in checks),
            reasons=[check.reason for check in checks if check.reason],
            location_data=location,
        )

        self.log_info(
            {
                "event_type": "login_risk_assessed",
                "user_id": str(user_id),
                "device_score": device_risk.score,
                "location_score": location_risk.score,
                "vpn_score": vpn_risk.score,
                "time_pattern_score": time_risk.score,
                "total_score": assessment.score,
                "reasons": assessment.reasons,
                "country": location.country if location else None,
            }
        )
        return assessment
