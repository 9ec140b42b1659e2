"""Domain exceptions raised by services and rendered as JSON by the app."""

from __future__ import annotations

from services.i18n import Msg


class ShopError(Exception):
    """Base class.  Carries a translatable message key and its parameters."""

    status_code = 400
    default_msg = Msg.INVALID_REQUEST

    def __init__(self, msg: Msg | None = None, detail: str = "", **params):
        self.msg = msg or self.default_msg
        self.detail = detail
        self.params = params
        if self.msg is Msg.INVALID_REQUEST:
            self.params.setdefault("detail", detail)
        super().__init__(detail or self.msg.value)


class ValidationError(ShopError):
    """Missing or invalid input.  Always raised before any write."""


class PermissionDenied(ShopError):
    status_code = 403
    default_msg = Msg.PERMISSION_DENIED


class FeatureLocked(PermissionDenied):
    default_msg = Msg.FEATURE_LOCKED

    def __init__(self, feature: str):
        super().__init__(feature=feature)
        self.feature = feature


_LIMIT_MESSAGES = {
    "bills": Msg.DEMO_LIMIT_BILLS,
    "inventory": Msg.DEMO_LIMIT_INVENTORY,
    "customers": Msg.DEMO_LIMIT_CUSTOMERS,
}


class DemoLimitReached(PermissionDenied):
    """A demo account hit the ceiling for *kind*."""

    def __init__(self, kind: str, current: int, maximum: int):
        super().__init__(_LIMIT_MESSAGES[kind], current=current, max=maximum)
        self.kind = kind
        self.current = current
        self.maximum = maximum
