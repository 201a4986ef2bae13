"""AsyncZeroconf mDNS advertisement of the bridge REST API.

Registration is optional and best-effort: failures are logged and reported
through the return value, the bridge keeps running without it.
"""
from typing import Dict, Optional, Tuple
import logging
import socket

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_zway-pump._tcp.local.'

# module-level registration handle: (async_zc, info)
_reg: Optional[Tuple[AsyncZeroconf, ServiceInfo]] = None


def _props_to_txt(props: Dict[str, str]):
    return {k: (v.encode('utf-8') if isinstance(v, str) else v) for k, v in props.items()}


def _get_primary_ipv4() -> Optional[str]:
    """Return the system-chosen outbound IPv4 address, or None.

    Connecting a UDP socket sends no packets but reveals the source address
    the routing table would use.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return None


async def register_service_async(name: str = 'zway-pump', port: int = 4408,
                                 props: Optional[Dict[str, str]] = None,
                                 advertise_addr: Optional[str] = None):
    """Advertise the REST API over mDNS.

    Returns (ok: bool, message: Optional[str]).
    """
    global _reg
    props = props or {}

    addresses = None
    addr = advertise_addr or _get_primary_ipv4()
    if addr:
        try:
            addresses = [socket.inet_pton(socket.AF_INET, addr)]
        except OSError:
            logger.warning("Not advertising invalid IPv4 address %s", addr)

    info = ServiceInfo(
        SERVICE_TYPE,
        f"{name}.{SERVICE_TYPE}",
        addresses=addresses,
        port=port,
        properties=_props_to_txt(props),
    )

    try:
        async_zc = AsyncZeroconf()
        # Let zeroconf disambiguate on a local name conflict, e.g. "zway-pump (2)"
        await async_zc.async_register_service(info, allow_name_change=True)
    except Exception as e:
        logger.exception("AsyncZeroconf registration failed for %s", name)
        return False, str(e)

    _reg = (async_zc, info)
    logger.info("Registered mDNS service %s on port %s (address=%s props=%s)",
                info.name, port, addr, props)
    return True, None


async def unregister_service_async():
    """Unregister the current advertisement, if any."""
    global _reg
    if not _reg:
        return
    async_zc, info = _reg
    _reg = None
    try:
        await async_zc.async_unregister_service(info)
    except Exception as e:
        logger.warning("Failed to unregister mDNS service: %s", e)
    await async_zc.async_close()
