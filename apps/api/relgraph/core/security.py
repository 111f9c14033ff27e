from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, status

from relgraph.api.v1.deps import get_settings_dep
from relgraph.core.config import Settings

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def verify_webhook_secret(settings: Settings, secret_header: str | None) -> None:
    """Reject graph writes whose shared secret is missing or wrong.

    An empty ``webhook_secret`` leaves the write routes open, which is how the
    API runs locally and in tests.
    """
    expected = settings.webhook_secret
    if not expected:
        return
    if not secret_header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {WEBHOOK_SECRET_HEADER} header",
        )
    if not hmac.compare_digest(secret_header.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid {WEBHOOK_SECRET_HEADER} header",
        )


def require_webhook_secret(
    settings: Settings = Depends(get_settings_dep),
    secret_header: str | None = Header(default=None, alias=WEBHOOK_SECRET_HEADER),
) -> None:
    verify_webhook_secret(settings, secret_header)
