"""
Local-only guard
================

Operator endpoints (queue list, approve, deny, filter reload) are served
only to loopback peers. The decision uses the socket peer address; proxy
headers such as X-Forwarded-For are ignored so a remote caller cannot
claim to be local.

Usage:
    @router.post("/queue/{action_id}/approve", dependencies=[Depends(require_local_client)])
"""

import ipaddress
import logging

from fastapi import Depends, Request

from commgate.core.errors import LocalOnly

logger = logging.getLogger(__name__)


def get_client_host(request: Request) -> str:
    """Direct peer address of the request ("" when unknown)."""
    return request.client.host if request.client else ""


def is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host.split("%", 1)[0]).is_loopback
    except ValueError:
        return False


def require_local_client(host: str = Depends(get_client_host)) -> None:
    if not is_loopback(host):
        logger.warning("Rejected local-only request from %s", host or "unknown peer")
        raise LocalOnly(detail=f"peer {host or 'unknown'}")
