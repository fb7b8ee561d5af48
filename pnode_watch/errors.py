from __future__ import annotations

from typing import List, Optional


class PNodeWatchError(Exception):
    """Base error for the service."""


class UpstreamError(PNodeWatchError):
    """An upstream HTTP or JSON-RPC call failed or returned malformed data."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PollError(UpstreamError):
    """Every seed failed to answer a JSON-RPC call."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        detail = "; ".join(self.errors) if self.errors else "no seeds configured"
        super().__init__(f"All seed nodes failed: {detail}")


class FeatureDisabledError(PNodeWatchError):
    def __init__(self, feature: str, setting: str) -> None:
        super().__init__(f"{feature} is disabled; set {setting} to enable it.")
        self.feature = feature
        self.setting = setting


class SubscriptionError(PNodeWatchError):
    """Invalid subscription request."""


class NotFoundError(PNodeWatchError):
    pass
