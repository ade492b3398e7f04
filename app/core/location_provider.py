"""
IP geolocation provider.

The engine only needs city, region, country and a VPN flag for an IP. The
shipped provider talks to a KYT (know-your-transaction) style HTTP API; an
``applicant_id`` switches to the identity-bound endpoint used for accounts
whose KYC verification is approved.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from app.core.utils import LoggerMixin
from app.schemas.login_schemas import LocationData


class LocationLookupError(Exception):
    """The provider could not resolve a location for the IP."""


class LocationProvider(ABC):
    @abstractmethod
    async def lookup(
        self, ip: str, *, user_id: str, applicant_id: Optional[str] = None
    ) -> LocationData:
        """Resolve ``ip`` to a location; raise on provider failure."""


class HttpLocationProvider(LocationProvider, LoggerMixin):
    """Location lookups through the provider's KYT transaction endpoint."""

    def __init__(self, base_url: str, token: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _payload(self, ip: str, user_id: Optional[str]) -> Dict[str, Any]:
        applicant: Dict[str, Any] = {"device": {"ipInfo": {"ip": ip}}}
        if user_id:
            applicant["externalUserId"] = user_id
        return {
            "txnId": uuid.uuid4().hex,
            "type": "userPlatformEvent",
            "applicant": applicant,
        }

    async def lookup(
        self, ip: str, *, user_id: str, applicant_id: Optional[str] = None
    ) -> LocationData:
        if applicant_id:
            url = f"{self.base_url}/resources/applicants/{applicant_id}/kyt/txns/-/data"
            payload = self._payload(ip, None)
            payload["applicantId"] = applicant_id
        else:
            url = f"{self.base_url}/resources/applicants/-/kyt/txns/-/data"
            payload = self._payload(ip, user_id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.token}"},
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.log_error(
                {
                    "event_type": "location_lookup_failed",
                    "user_id": user_id,
                    "identity_bound": bool(applicant_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise LocationLookupError(str(e) or type(e).__name__) from e

        return self.parse_response(data)

    @staticmethod
    def parse_response(data: Dict[str, Any]) -> LocationData:
        applicant = ((data or {}).get("data") or {}).get("applicant") or {}
        ip_info = (applicant.get("device") or {}).get("ipInfo") or {}
        return LocationData(
            city=ip_info.get("city") or None,
            region=ip_info.get("state") or None,
            country=ip_info.get("countryCode2") or None,
            is_vpn=bool(ip_info.get("vpn", False)),
        )
