"""Wallet-signature authentication for mutating routes."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request

from intentcast_protocol.auth import (
    MUTATING_METHODS,
    NONCE_HEADER,
    SIGNATURE_HEADER,
    WALLET_HEADER,
    AuthContext,
)

from ..dependencies import ApiDependencies, get_deps

logger = logging.getLogger("intentcast.api.auth")


async def require_wallet(
    request: Request,
    deps: ApiDependencies = Depends(get_deps),
) -> Optional[AuthContext]:
    """
    Dependency that verifies the signed wallet headers of a mutating request.

    On success the ``AuthContext`` is stored on ``request.state.auth``.
    Returns None when wallet auth is disabled or the method is read-only.
    """
    request.state.auth = None
    if not deps.settings.require_wallet_auth or request.method.upper() not in MUTATING_METHODS:
        return None

    context = deps.authenticator.authenticate(
        wallet_address=request.headers.get(WALLET_HEADER),
        signature=request.headers.get(SIGNATURE_HEADER),
        nonce=request.headers.get(NONCE_HEADER),
        method=request.method,
        path=request.url.path,
    )
    request.state.auth = context
    logger.debug("Authenticated wallet %s for %s %s", context.wallet_address, request.method, request.url.path)
    return context


def caller_wallet(auth: Optional[AuthContext]) -> Optional[str]:
    return auth.wallet_address if auth else None
