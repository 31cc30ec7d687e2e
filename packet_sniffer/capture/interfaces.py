# packet_sniffer/capture/interfaces.py
# Maps adapter name fragments to capturable interfaces and watches for host addresses
# that only show up later (VPN / tunnel adapters).
import socket
import threading
from enum import Enum
from typing import Callable, List, Optional

import psutil
from loguru import logger

from ..errors import InterfaceNotFound
from .models import InterfaceHandle, InterfaceInfo


def local_ipv4_addresses() -> List[str]:
    """IPv4 addresses assigned to this host, loopback excluded, in interface order."""
    addresses = []
    for _, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            if addr.address.startswith("127."):
                continue
            if addr.address not in addresses:
                addresses.append(addr.address)
    return addresses


class InterfaceResolver:
    def __init__(self, provider, address_source: Callable[[], List[str]] = local_ipv4_addresses):
        self.provider = provider
        self._address_source = address_source

    def interfaces(self) -> List[InterfaceInfo]:
        return list(self.provider.list_interfaces())

    def resolve(self, name_prefix: str, address: Optional[str] = None) -> InterfaceHandle:
        """First interface whose description contains name_prefix."""
        interfaces = self.interfaces()
        if not interfaces:
            raise InterfaceNotFound("No capturable interfaces were found on this host")
        for info in interfaces:
            # some platforms report no description, only the device name
            if name_prefix in (info.description or info.name):
                handle = InterfaceHandle.from_info(info, address=address)
                logger.info("Resolved adapter '{}' to {} (index {}, address {})",
                            name_prefix, handle.name, handle.index, handle.address)
                return handle
        raise InterfaceNotFound("No such interface", {
            "adapter": name_prefix,
            "available": ", ".join(i.description or i.name for i in interfaces),
        })

    def local_addresses(self) -> List[str]:
        return self._address_source()

    def address_with_prefix(self, prefix: str) -> Optional[str]:
        return next((a for a in self.local_addresses() if a.startswith(prefix)), None)


class PollerState(Enum):
    WAITING_FOR_ADDRESS = "waiting_for_address"
    RESOLVED = "resolved"
    ABORTED = "aborted"


class AddressPoller:
    """
    Polls the host's addresses until one starts with `prefix`.

    Stays in WAITING_FOR_ADDRESS across lookups that fail or come back empty, so an
    address that flaps before it settles just means more polling.
    """

    def __init__(self, resolver: InterfaceResolver, prefix: str, interval: float, stop_event: threading.Event):
        self.resolver = resolver
        self.prefix = prefix
        self.interval = interval
        self.stop_event = stop_event
        self.state = PollerState.WAITING_FOR_ADDRESS
        self.address: Optional[str] = None
        self.attempts = 0

    def poll_once(self) -> Optional[str]:
        self.attempts += 1
        try:
            return self.resolver.address_with_prefix(self.prefix)
        except OSError as e:
            logger.warning("Address lookup failed while waiting for {}*: {}", self.prefix, e)
            return None

    def wait(self) -> Optional[str]:
        logger.info("Waiting for an address starting with {}", self.prefix)
        while not self.stop_event.is_set():
            address = self.poll_once()
            if address:
                self.address = address
                self.state = PollerState.RESOLVED
                logger.info("Address {} appeared after {} poll(s)", address, self.attempts)
                return address
            self.stop_event.wait(self.interval)
        self.state = PollerState.ABORTED
        logger.info("Stopped waiting for {}* after {} poll(s)", self.prefix, self.attempts)
        return None
