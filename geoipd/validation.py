"""
Address validation for the lookup path
"""

import ipaddress
from typing import Union

from .errors import InvalidAddressError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def normalize_address(value) -> IPAddress:
    """Parse value into an IP address, unwrapping IPv4-mapped IPv6 addresses.

    Raises InvalidAddressError for anything that is not a single address.
    """
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        ip = value
    else:
        if not isinstance(value, str):
            raise InvalidAddressError("failed to parse ip")
        try:
            ip = ipaddress.ip_address(value.strip())
        except ValueError:
            raise InvalidAddressError("failed to parse ip")

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip
