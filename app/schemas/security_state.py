"""
Value types stored in the shared counter store.

Each key namespace has one model that owns its key format and its wire
representation, so TTL and mutation stay tied to one logical entity:

    login_security:attempts:{identifier}   AttemptWindow (list of epoch ms)
    login_security:lockout:{identifier}    Lockout (epoch ms expiry)
    login_otp:{client_ip}:{fingerprint}    OtpSession (JSON)
"""

from typing import List, Optional

from pydantic import BaseModel, Field

RATE_LIMIT_PREFIX = "login_security"
OTP_PREFIX = "login_otp"


class AttemptWindow(BaseModel):
    """Sliding window of attempt timestamps, newest first."""

    identifier: str
    timestamps: List[int] = Field(default_factory=list)

    @staticmethod
    def key(identifier: str) -> str:
        return f"{RATE_LIMIT_PREFIX}:attempts:{identifier}"

    @classmethod
    def from_entries(cls, identifier: str, entries: List[str]) -> "AttemptWindow":
        timestamps = []
        for entry in entries:
            try:
                timestamps.append(int(entry))
            except (TypeError, ValueError):
                continue
        return cls(identifier=identifier, timestamps=timestamps)

    def pruned(self, now_ms: int, window_seconds: int) -> "AttemptWindow":
        cutoff = now_ms - window_seconds * 1000
        return AttemptWindow(
            identifier=self.identifier,
            timestamps=[ts for ts in self.timestamps if ts > cutoff],
        )

    def to_entries(self) -> List[str]:
        """Entries in LPUSH order so the rewritten list keeps newest first."""
        return [str(ts) for ts in reversed(self.timestamps)]

    @property
    def count(self) -> int:
        return len(self.timestamps)


class Lockout(BaseModel):
    identifier: str
    expires_at_ms: int

    @staticmethod
    def key(identifier: str) -> str:
        return f"{RATE_LIMIT_PREFIX}:lockout:{identifier}"

    @classmethod
    def parse(cls, identifier: str, raw: Optional[str]) -> Optional["Lockout"]:
        if raw is None:
            return None
        try:
            return cls(identifier=identifier, expires_at_ms=int(raw))
        except (TypeError, ValueError):
            return None

    def serialize(self) -> str:
        return str(self.expires_at_ms)

    def is_active(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms


class OtpSession(BaseModel):
    """Pending step-up verification for one (client IP, device) pair."""

    code: str  # argon2 hash, never the plain code
    user_id: str
    expiration: int  # epoch ms
    attempts: int = 0
    masked_contact: str

    @staticmethod
    def key(client_ip: str, fingerprint: str) -> str:
        return f"{OTP_PREFIX}:{client_ip}:{fingerprint}"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["OtpSession"]:
        if not raw:
            return None
        return cls.model_validate_json(raw)

    def serialize(self) -> str:
        return self.model_dump_json()

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expiration
