"""Domain errors raised by the services and rendered by one handler in main.py."""


class ServiceException(Exception):
    status_code = 500

    def __init__(self, detail):
        super().__init__(detail)
        self.detail = detail

    def __str__(self):
        return str(self.detail)

    def to_dict(self) -> dict:
        return {"success": False, "error": str(self.detail)}


class ValidationError(ServiceException):
    status_code = 400


class MissingToken(ServiceException):
    status_code = 401

    def __init__(self, detail="No valid authorization token provided"):
        super().__init__(detail)


class InvalidCredentials(ServiceException):
    status_code = 401

    def __init__(self, detail="Invalid email or password"):
        super().__init__(detail)


class InvalidOrExpiredToken(ServiceException):
    status_code = 401

    def __init__(self, detail="Invalid or expired token"):
        super().__init__(detail)


class UserNotFound(ServiceException):
    status_code = 404

    def __init__(self, detail="User not found"):
        super().__init__(detail)


class UnknownPlan(ServiceException):
    status_code = 404


class SubscriptionNotFound(ServiceException):
    status_code = 404

    def __init__(self, detail="No matching subscription found"):
        super().__init__(detail)


class DuplicateEmail(ServiceException):
    status_code = 409

    def __init__(self, detail="User already exists with this email"):
        super().__init__(detail)


class AlreadyActive(ServiceException):
    status_code = 409

    def __init__(self, detail="User already has an active subscription"):
        super().__init__(detail)


class GatewayError(ServiceException):
    status_code = 502


class StorageError(ServiceException):
    """Persistence failed. When the gateway already holds a subscription that
    the local store does not, its id travels with the error for repair."""

    status_code = 500

    def __init__(self, detail="Failed to save changes", gateway_subscription_id=None):
        super().__init__(detail)
        self.gateway_subscription_id = gateway_subscription_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.gateway_subscription_id:
            data["gatewaySubscriptionId"] = self.gateway_subscription_id
        return data
