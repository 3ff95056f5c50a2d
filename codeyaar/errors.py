"""
Failure taxonomy for the gateway.

Every rejection or failure a request can end in is a GatewayError subclass
with a wire status and a short public message. Handlers raise these; the
app's exception handler renders them. Internal details go to the log,
never into the message.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base gateway error."""
    status_code = 500
    message = "Unable to process request"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict:
        body = {"error": self.message}
        body.update(self.extra)
        return body


class Unauthenticated(GatewayError):
    """No bearer token, or a header without the Bearer prefix."""
    status_code = 401
    message = "Authentication required"


class InvalidCredentials(GatewayError):
    """The identity provider rejected the token or returned no user."""
    status_code = 401
    message = "Invalid authentication"


class QuotaExceeded(GatewayError):
    """The caller's daily allowance is used up."""
    status_code = 429
    message = "Daily AI request limit reached. Please try again tomorrow."

    def __init__(self, reset_at: str | None = None, message: str | None = None):
        super().__init__(message, remaining=0, reset_at=reset_at)


class QuotaUnavailable(GatewayError):
    """The quota check itself failed and the limiter is configured fail-closed."""
    status_code = 503
    message = "Service temporarily unavailable"


class MalformedRequest(GatewayError):
    status_code = 400
    message = "Missing required fields"


class ContentBlocked(GatewayError):
    """The safety filter tripped."""
    status_code = 400
    message = "Request blocked for security reasons."

    def __init__(self, message: str | None = None):
        super().__init__(message, warning=True)


class UpstreamBusy(GatewayError):
    """Upstream answered 429."""
    status_code = 429
    message = "Service busy. Please try again in a moment."


class UpstreamQuotaExceeded(GatewayError):
    """Upstream answered 402."""
    status_code = 402
    message = "Service limit reached. Please contact support."


class UpstreamUnavailable(GatewayError):
    """Any other upstream failure, including a missing API key."""
    status_code = 500
    message = "Service temporarily unavailable"


class InternalError(GatewayError):
    status_code = 500
    message = "Unable to process request"
