from .payment import Payment
from .session import UserSession
from .settings import Settings
from .subscription import Subscription
from .user import User

__all__ = ["Payment", "UserSession", "Settings", "Subscription", "User"]
