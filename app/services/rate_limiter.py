from typing import Optional

from app.config.login_security import LoginSecurityConfig
from app.core.clock import Clock, epoch_millis, utc_now
from app.core.counter_store import CounterStore
from app.core.failure_policy import FailurePolicy, GuardedOperation
from app.core.utils import LoggerMixin
from app.schemas.login_schemas import RateLimitDecision
from app.schemas.security_state import AttemptWindow, Lockout

LOCKED_REASON = "Account temporarily locked due to too many failed attempts"
LOCKOUT_TRIGGERED_REASON = "Too many login attempts. Account temporarily locked."


class IdentifierRateLimiter(LoggerMixin):
    """
    Sliding-window attempt limiter keyed by login identifier.

    Every call to ``check`` counts as an attempt. Once the window holds more
    than ``max_attempts`` entries the identifier is locked out for
    ``lockout_duration_seconds``; writing the lockout also empties the
    window, so the identifier starts fresh when the lockout expires.
    """

    def __init__(
        self,
        store: CounterStore,
        config: LoginSecurityConfig,
        clock: Clock = utc_now,
        policy: Optional[FailurePolicy] = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock
        self.policy = policy or FailurePolicy()

    @staticmethod
    def normalize(identifier: str) -> str:
        return identifier.strip().lower()

    async def check(self, identifier: str, bypass: bool = False) -> RateLimitDecision:
        """
        Record an attempt for ``identifier`` and decide whether it may proceed.

        Args:
            identifier: Email, username or phone number of the attempt
            bypass: Account is exempt from login restrictions; nothing is recorded

        Returns:
            RateLimitDecision with the reason when not allowed
        """
        if bypass:
            return RateLimitDecision(allowed=True)

        identifier = self.normalize(identifier)
        now_ms = epoch_millis(self.clock())
        timeout = self.config.store_timeout_seconds

        lockout = await self.policy.run(
            GuardedOperation.LOCKOUT_CHECK,
            self._active_lockout(identifier, now_ms),
            fallback=None,
            timeout=timeout,
        )
        if lockout is not None:
            self.log_warning(
                {
                    "event_type": "login_blocked_by_lockout",
                    "identifier": identifier,
                    "locked_until_ms": lockout.expires_at_ms,
                }
            )
            return RateLimitDecision(allowed=False, reason=LOCKED_REASON)

        count = await self.policy.run(
            GuardedOperation.RECORD_ATTEMPT,
            self._record_attempt(identifier, now_ms),
            fallback=None,
            timeout=timeout,
        )
        if count is None or count <= self.config.max_attempts:
            return RateLimitDecision(allowed=True)

        lockout = Lockout(
            identifier=identifier,
            expires_at_ms=now_ms + self.config.lockout_duration_seconds * 1000,
        )
        # A failed write still blocks this attempt
        await self.policy.run(
            GuardedOperation.LOCKOUT_WRITE,
            self._write_lockout(lockout),
            fallback=False,
            timeout=timeout,
        )
        self.log_security_event(
            {
                "event_type": "identifier_locked_out",
                "identifier": identifier,
                "attempts": count,
                "locked_until_ms": lockout.expires_at_ms,
            }
        )
        return RateLimitDecision(allowed=False, reason=LOCKOUT_TRIGGERED_REASON)

    async def clear(self, identifier: str) -> None:
        """Forget attempts and lockout for ``identifier``. Safe to repeat."""
        identifier = self.normalize(identifier)
        await self.policy.run(
            GuardedOperation.CLEAR_ATTEMPTS,
            self.store.delete(AttemptWindow.key(identifier), Lockout.key(identifier)),
            fallback=0,
            timeout=self.config.store_timeout_seconds,
            context={"identifier": identifier},
        )

    async def _active_lockout(self, identifier: str, now_ms: int) -> Optional[Lockout]:
        key = Lockout.key(identifier)
        raw = await self.store.get(key)
        if raw is None:
            return None
        lockout = Lockout.parse(identifier, raw)
        if lockout is not None and lockout.is_active(now_ms):
            return lockout
        await self.store.delete(key)
        return None

    async def _record_attempt(self, identifier: str, now_ms: int) -> int:
        key = AttemptWindow.key(identifier)
        window_seconds = self.config.window_seconds

        await self.store.lpush(key, str(now_ms))
        await self.store.expire(key, window_seconds)

        entries = await self.store.lrange(key, 0, -1)
        window = AttemptWindow.from_entries(identifier, entries).pruned(
            now_ms, window_seconds
        )
        if window.count != len(entries):
            await self.store.delete(key)
            if window.count:
                await self.store.lpush(key, *window.to_entries())
                await self.store.expire(key, window_seconds)
        return window.count

    async def _write_lockout(self, lockout: Lockout) -> bool:
        await self.store.set(
            Lockout.key(lockout.identifier),
            lockout.serialize(),
            ttl=self.config.lockout_duration_seconds,
        )
        await self.store.delete(AttemptWindow.key(lockout.identifier))
        return True
