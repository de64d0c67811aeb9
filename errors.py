"""Error taxonomy for calls to Pylon, Slack and incident.io."""


class RoosterError(Exception):
    """Base class for rooster errors."""


class UpstreamError(RoosterError):
    """Non-2xx response from an external REST dependency."""

    def __init__(self, service: str, status: int, body: str = ""):
        super().__init__(f"{service} api error: {status} - {body[:500]}")
        self.service = service
        self.status = status
        self.body = body


class MalformedResponseError(RoosterError):
    """Response parsed but did not have the expected shape."""

    def __init__(self, service: str, detail: str):
        super().__init__(f"{service} returned an unexpected response: {detail}")
        self.service = service
        self.detail = detail


class ResolutionMiss(RoosterError):
    """A single identity lookup produced nothing usable."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"could not resolve {kind} {key}")
        self.kind = kind
        self.key = key


class AuthFailure(RoosterError):
    """Webhook signature missing or invalid."""

    def __init__(self, reason: str = "invalid signature"):
        super().__init__(reason)
        self.reason = reason
