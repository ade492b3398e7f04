import hashlib
import ipaddress
from fastapi import Request

from app.schemas.login_schemas import DeviceInfo, SecurityContext


FINGERPRINT_HEADER = "x-fingerprint"
DEVICE_NAME_HEADER = "x-device-name"
DEVICE_TYPE_HEADER = "x-device-type"
OS_HEADER = "x-os"
BROWSER_HEADER = "x-browser"


class SessionManager:

    @staticmethod
    def normalize_header(header_value: str) -> str:
        """Normalize header values by removing extra whitespace and converting to lowercase"""
        if not header_value:
            return ""
        return " ".join(header_value.strip().lower().split())

    @staticmethod
    def extract_client_ip(request: Request) -> str:
        """Extract client IP with comprehensive proxy support"""
        # Check for various proxy headers in order of preference
        ip_headers = [
            "cf-connecting-ip",  # Cloudflare
            "x-real-ip",  # Nginx
            "x-forwarded-for",  # Standard proxy header
            "x-client-ip",  # Alternative
            "x-cluster-client-ip",  # Kubernetes
        ]

        for header in ip_headers:
            ip_value = request.headers.get(header)
            if ip_value:
                # Comma-separated chains: the first hop is the client
                first_ip = ip_value.split(",")[0].strip()
                try:
                    ipaddress.ip_address(first_ip)
                    return first_ip
                except ValueError:
                    continue

        return str(request.client.host) if request.client else "unknown"

    @staticmethod
    def parse_user_agent(user_agent: str) -> dict:
        """Simple user agent parsing without external dependencies"""
        if not user_agent:
            return {"browser": None, "os": None, "device_type": None}

        ua_lower = user_agent.lower()

        # Edge and Opera also announce Chrome, so they are checked first
        browsers = {
            "edge": ["edge", "edg/"],
            "opera": ["opera", "opr/"],
            "chrome": ["chrome", "crios"],
            "firefox": ["firefox", "fxios"],
            "safari": ["safari"],
            "internet_explorer": ["trident", "msie"],
        }

        browser = None
        for browser_name, patterns in browsers.items():
            if any(pattern in ua_lower for pattern in patterns):
                browser = browser_name
                break

        operating_systems = {
            "android": ["android"],
            "ios": ["iphone", "ipad", "ipod"],
            "windows": ["windows", "win32", "win64"],
            "macos": ["mac os", "darwin"],
            "linux": ["linux", "ubuntu", "debian"],
        }

        os = None
        for os_name, patterns in operating_systems.items():
            if any(pattern in ua_lower for pattern in patterns):
                os = os_name
                break

        is_mobile = any(term in ua_lower for term in ["mobile", "android", "iphone"])
        is_tablet = any(term in ua_lower for term in ["tablet", "ipad"])

        if is_tablet:
            device_type = "tablet"
        elif is_mobile:
            device_type = "mobile"
        else:
            device_type = "desktop"

        return {"browser": browser, "os": os, "device_type": device_type}

    @staticmethod
    def derive_fingerprint(request: Request) -> str:
        """
        Header-derived fingerprint for clients that do not send X-Fingerprint.

        Built from stable components only; the IP is left out so a device
        keeps its identity across networks.
        """
        user_agent = SessionManager.normalize_header(request.headers.get("user-agent", ""))
        accept_language = request.headers.get("accept-language", "").strip()
        normalized_language = (
            accept_language.split(",")[0].split(";")[0].lower()
            if accept_language
            else ""
        )
        components = [
            user_agent,
            normalized_language,
            SessionManager.normalize_header(request.headers.get("sec-ch-ua-platform", "")),
        ]
        fingerprint_data = "|".join(filter(None, components)) or "anonymous"
        return hashlib.sha256(fingerprint_data.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def build_security_context(request: Request) -> SecurityContext:
        """Security context of one login request: client IP, fingerprint and device headers."""
        headers = request.headers
        user_agent = headers.get("user-agent", "").strip() or None
        parsed_ua = SessionManager.parse_user_agent(user_agent or "")

        fingerprint = (headers.get(FINGERPRINT_HEADER) or "").strip()
        if not fingerprint:
            fingerprint = SessionManager.derive_fingerprint(request)

        device_info = DeviceInfo(
            device_name=(headers.get(DEVICE_NAME_HEADER) or "").strip() or None,
            device_type=(headers.get(DEVICE_TYPE_HEADER) or "").strip()
            or parsed_ua["device_type"],
            os=(headers.get(OS_HEADER) or "").strip() or parsed_ua["os"],
            browser=(headers.get(BROWSER_HEADER) or "").strip() or parsed_ua["browser"],
        )

        return SecurityContext(
            client_ip=SessionManager.extract_client_ip(request),
            fingerprint=fingerprint,
            user_agent=user_agent,
            device_info=device_info,
        )
