from .user_model import (
    User,
    UserStatus,
    KycVerification,
    KycStatus,
)
from .security_model import (
    LoginDevice,
    LoginEvent,
    IpCountryBan,
    BanType,
)
