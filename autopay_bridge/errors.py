class BridgeError(Exception):
    """Base class for failures inside the reconciliation pipeline."""


class AuthenticationFailure(BridgeError):
    pass


class MalformedEvent(BridgeError):
    pass


class NotFound(BridgeError):
    pass


class DuplicateEvent(BridgeError):
    pass


class UpstreamFailure(BridgeError):
    pass


class GatewayError(UpstreamFailure):
    """Razorpay API call failed."""


class StorefrontError(UpstreamFailure):
    """Shopify Admin API call failed or returned userErrors."""

    def __init__(self, message, user_errors=None):
        super().__init__(message)
        self.user_errors = user_errors or []
