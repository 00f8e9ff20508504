from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import requests
from pywebpush import WebPushException, webpush

from config import Settings, get_settings

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = frozenset({404, 410})


@dataclass(frozen=True)
class PushTarget:
    endpoint: str
    p256dh: str
    auth: str

    def as_subscription_info(self) -> dict[str, object]:
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class PushDeliveryError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EndpointGone(PushDeliveryError):
    """The push service no longer knows the endpoint; the subscription is dead."""


class PushSender(Protocol):
    def send(self, target: PushTarget, payload: str) -> None: ...


class WebPushSender:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def send(self, target: PushTarget, payload: str) -> None:
        if not self.settings.push_enabled:
            raise PushDeliveryError("VAPID keys not configured")

        try:
            webpush(
                subscription_info=target.as_subscription_info(),
                data=payload,
                vapid_private_key=self.settings.vapid_private_key,
                vapid_claims={"sub": self.settings.vapid_subject},
                timeout=self.settings.push_timeout_secs,
            )
        except WebPushException as exc:
            status_code = getattr(exc.response, "status_code", None)
            if status_code in GONE_STATUS_CODES:
                raise EndpointGone(str(exc), status_code=status_code) from exc
            raise PushDeliveryError(str(exc), status_code=status_code) from exc
        except requests.RequestException as exc:
            raise PushDeliveryError(f"Push transport failed: {exc}") from exc
        logger.debug(f"push_sent: endpoint={target.endpoint[:40]}")
