"""
Bounded polling after `start`.

Nothing here raises on timeout: every loop gives up after a fixed number of
attempts with a fixed sleep between them and reports "not ready" / no
address, leaving it to the caller to warn and carry on.
"""

import re
import time
from typing import Any, Dict, List, Optional

from config.settings import (
    IP_POLL_ATTEMPTS,
    LOOPBACK_POLL_ATTEMPTS,
    LOOPBACK_POLL_INTERVAL,
    LXC_IP_POLL_INTERVAL,
    VM_IP_POLL_INTERVAL,
)
from core.console import Console
from core.logger import log_event
from core.pve_cli import PveCli

_INET_RE = re.compile(r"inet\s+(\d+(?:\.\d+){3})")


def wait_for_container(
    pve: PveCli,
    ctid: int,
    attempts: int = LOOPBACK_POLL_ATTEMPTS,
    interval: float = LOOPBACK_POLL_INTERVAL,
) -> bool:
    """Ping loopback inside the container until its network stack answers."""
    for attempt in range(1, attempts + 1):
        result = pve.exec_in_container(ctid, ["ping", "-c", "1", "127.0.0.1"], check=False)
        if result.returncode == 0:
            log_event(f"[ready] Container {ctid} answered loopback ping (attempt {attempt})")
            return True
        if attempt < attempts:
            time.sleep(interval)
    log_event(f"[ready] Container {ctid} did not answer loopback ping after {attempts} attempts")
    return False


def parse_inet_address(output: str) -> Optional[str]:
    for match in _INET_RE.finditer(output or ""):
        address = match.group(1)
        if not address.startswith("127."):
            return address
    return None


def pick_guest_agent_address(interfaces: List[Dict[str, Any]]) -> Optional[str]:
    """First non-loopback IPv4 address from `qm guest cmd ... network-get-interfaces`."""
    for iface in interfaces:
        if iface.get("name") == "lo":
            continue
        for entry in iface.get("ip-addresses") or []:
            address = entry.get("ip-address", "")
            if entry.get("ip-address-type") == "ipv4" and address and not address.startswith("127."):
                return address
    return None


def discover_container_ip(
    pve: PveCli,
    ctid: int,
    console: Optional[Console] = None,
    attempts: int = IP_POLL_ATTEMPTS,
    interval: float = LXC_IP_POLL_INTERVAL,
) -> Optional[str]:
    for attempt in range(1, attempts + 1):
        result = pve.exec_in_container(
            ctid, ["ip", "-4", "-o", "addr", "show", "dev", "eth0"], check=False
        )
        address = parse_inet_address(result.stdout) if result.returncode == 0 else None
        if address:
            log_event(f"[ready] Container {ctid} has address {address}")
            return address
        if attempt < attempts:
            if console:
                console.warning(
                    f"Attempt {attempt}: IP address not found. Pausing for {interval:g} seconds..."
                )
            time.sleep(interval)
    log_event(f"[ready] No address for container {ctid} after {attempts} attempts")
    return None


def discover_vm_ip(
    pve: PveCli,
    vmid: int,
    console: Optional[Console] = None,
    attempts: int = IP_POLL_ATTEMPTS,
    interval: float = VM_IP_POLL_INTERVAL,
) -> Optional[str]:
    for attempt in range(1, attempts + 1):
        interfaces = pve.guest_network_interfaces(vmid)
        address = pick_guest_agent_address(interfaces) if interfaces else None
        if address:
            log_event(f"[ready] VM {vmid} has address {address}")
            return address
        if attempt < attempts:
            if console:
                console.warning(
                    f"Attempt {attempt}: guest agent reported no address. "
                    f"Pausing for {interval:g} seconds..."
                )
            time.sleep(interval)
    log_event(f"[ready] No address for VM {vmid} after {attempts} attempts")
    return None
