"""
Failure policy table for the login security engine.

Each guarded operation names what happens when its store or provider call
fails or times out:

    FAIL_OPEN    the error is logged and a neutral "no signal" value is used
    FAIL_CLOSED  the error is logged and the security decision already taken
                 (for example "locked out") stands
    PROPAGATE    the error reaches the caller

Compliance bans and region restrictions always propagate, whatever the
table says for the operation that produced them.
"""

import asyncio
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Dict, Mapping, Optional, TypeVar

from app.core.exceptions import RestrictionException
from app.core.utils import LoggerMixin

T = TypeVar("T")


class FailureMode(str, Enum):
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"
    PROPAGATE = "propagate"


class GuardedOperation(str, Enum):
    LOCKOUT_CHECK = "rate_limit.lockout_check"
    RECORD_ATTEMPT = "rate_limit.record_attempt"
    LOCKOUT_WRITE = "rate_limit.lockout_write"
    CLEAR_ATTEMPTS = "rate_limit.clear"
    DEVICE_LOOKUP = "risk.device_lookup"
    LOCATION_LOOKUP = "location.lookup"
    LOCATION_HISTORY = "location.history"
    BAN_LIST_LOOKUP = "location.ban_list_lookup"
    REGISTRATION_LOCATION_CHECK = "device.registration_location_check"
    REGIONAL_LOOKUP = "regional_access.lookup"
    OTP_SESSION_PEEK = "otp.session_peek"
    OTP_PRIMARY_DISPATCH = "otp.primary_dispatch"
    HIGH_RISK_ALERT = "otp.high_risk_alert"


FAILURE_POLICY: Mapping[GuardedOperation, FailureMode] = MappingProxyType(
    {
        GuardedOperation.LOCKOUT_CHECK: FailureMode.FAIL_OPEN,
        GuardedOperation.RECORD_ATTEMPT: FailureMode.FAIL_OPEN,
        GuardedOperation.LOCKOUT_WRITE: FailureMode.FAIL_CLOSED,
        GuardedOperation.CLEAR_ATTEMPTS: FailureMode.FAIL_OPEN,
        GuardedOperation.DEVICE_LOOKUP: FailureMode.FAIL_OPEN,
        GuardedOperation.LOCATION_LOOKUP: FailureMode.FAIL_OPEN,
        GuardedOperation.LOCATION_HISTORY: FailureMode.FAIL_OPEN,
        GuardedOperation.BAN_LIST_LOOKUP: FailureMode.FAIL_OPEN,
        GuardedOperation.REGISTRATION_LOCATION_CHECK: FailureMode.FAIL_OPEN,
        GuardedOperation.REGIONAL_LOOKUP: FailureMode.FAIL_OPEN,
        GuardedOperation.OTP_SESSION_PEEK: FailureMode.FAIL_OPEN,
        GuardedOperation.OTP_PRIMARY_DISPATCH: FailureMode.PROPAGATE,
        GuardedOperation.HIGH_RISK_ALERT: FailureMode.FAIL_OPEN,
    }
)

ALWAYS_PROPAGATE = (RestrictionException,)


class FailurePolicy(LoggerMixin):
    """Runs collaborator calls under the policy table with an optional timeout."""

    def __init__(self, table: Mapping[GuardedOperation, FailureMode] = FAILURE_POLICY):
        self.table = table

    def mode_for(self, operation: GuardedOperation) -> FailureMode:
        return self.table.get(operation, FailureMode.PROPAGATE)

    async def run(
        self,
        operation: GuardedOperation,
        call: Awaitable[T],
        fallback: T,
        timeout: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> T:
        """
        Await ``call`` and apply the operation's failure mode on error.

        Args:
            operation: Table entry that governs this call
            call: Awaitable performing the store/provider work
            fallback: Value returned when the failure is absorbed
            timeout: Upper bound in seconds; a timeout counts as a failure
            context: Extra fields for the log line

        Returns:
            The call's result, or ``fallback`` when the failure is absorbed
        """
        try:
            if timeout:
                return await asyncio.wait_for(call, timeout=timeout)
            return await call
        except ALWAYS_PROPAGATE:
            raise
        except Exception as e:
            mode = self.mode_for(operation)
            if mode == FailureMode.PROPAGATE:
                raise
            self.log_error(
                {
                    "event_type": "guarded_operation_failed",
                    "operation": operation.value,
                    "mode": mode.value,
                    "error": str(e) or type(e).__name__,
                    "error_type": type(e).__name__,
                    **(context or {}),
                }
            )
            return fallback
