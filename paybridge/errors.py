"""Error taxonomy for the bridge.

- ValidationError:     missing/malformed caller input (400, never retried)
- UpstreamError:       payment or order platform call failed (500)
- AuthenticationError: webhook signature rejected (401, nothing relayed)
- RelayError:          order-platform update after settlement failed
                       (logged only, never surfaced to the webhook sender)
"""


class BridgeError(Exception):
    """Base class. Carries the HTTP status used when rendered as JSON."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"success": False, "error": self.message}


class ValidationError(BridgeError):
    status_code = 400

    def __init__(self, message, missing=None):
        super().__init__(message)
        self.missing = list(missing or [])

    def to_dict(self):
        body = super().to_dict()
        if self.missing:
            body["missing"] = self.missing
        return body


class UpstreamError(BridgeError):
    status_code = 500

    def __init__(self, message, platform=None, status_code=None):
        super().__init__(message, status_code=status_code)
        self.platform = platform


class AuthenticationError(BridgeError):
    status_code = 401


class RelayError(UpstreamError):
    """Settlement could not be forwarded to the order platform."""
