# Copyright (c) 2022 Pieter Wuille
# Distributed under the MIT software license, see the accompanying
# file LICENSE or http://www.opensource.org/licenses/mit-license.php.

"""
This module provides the Prefix class, the key under which AS paths and
bottleneck results are stored.
"""

from __future__ import annotations
import ipaddress
from functools import total_ordering
from typing import Tuple, Union

from bottleneck_errors import AddrParse, InvalidMask, NoSlash

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Address width in bytes per IP version.
ADDRESS_BYTES = {4: 4, 6: 16}


@total_ordering
class Prefix:
    """
    A CIDR prefix: an IP address (v4 or v6) plus a mask length.

    Prefix objects are immutable, hashable, and compare equal when both the
    address and the mask are equal. The address is kept as given; host bits
    beyond the mask are not cleared, as RIB dumps never set them.

    The textual representation is "[ip]/[mask]", e.g. "1.0.139.0/24" or
    "2001:318::/32".
    """

    __slots__ = ("_ip", "_mask")

    def __init__(self, ip: IPAddress, mask: int) -> None:
        if not 0 <= mask <= ip.max_prefixlen:
            raise InvalidMask("%s/%s" % (ip, mask), "out of range for IPv%i" % ip.version)
        object.__setattr__(self, "_ip", ip)
        object.__setattr__(self, "_mask", mask)

    def __setattr__(self, name, value):
        raise AttributeError("Prefix objects are immutable")

    @property
    def ip(self) -> IPAddress:
        return self._ip

    @property
    def mask(self) -> int:
        return self._mask

    @property
    def version(self) -> int:
        return self._ip.version

    @property
    def first_octet(self) -> int:
        """The leading byte of the address, used to split work into address ranges."""
        return self._ip.packed[0]

    @staticmethod
    def from_text(text: str) -> Prefix:
        """Construct a Prefix from a string in "[ip]/[mask]" format."""
        if '/' not in text:
            raise NoSlash(text)
        ip_str, mask_str = text.split('/', 1)
        try:
            ip = ipaddress.ip_address(ip_str)
        except ValueError:
            raise AddrParse(ip_str) from None
        if len(mask_str) == 0 or any(c < '0' or c > '9' for c in mask_str):
            raise InvalidMask(text)
        mask = int(mask_str)
        if mask > ip.max_prefixlen:
            raise InvalidMask(text, "out of range for IPv%i" % ip.version)
        return Prefix(ip, mask)

    @staticmethod
    def from_binary(octets: bytes, mask: int, is_v6: bool) -> Prefix:
        """
        Construct a Prefix from the (possibly shortened) network bytes found in
        a RIB record. Missing trailing bytes are zero.
        """
        width = ADDRESS_BYTES[6 if is_v6 else 4]
        if len(octets) > width:
            raise ValueError("Prefix of %i bytes does not fit in an IPv%i address" % (len(octets), 6 if is_v6 else 4))
        padded = bytes(octets) + bytes(width - len(octets))
        if is_v6:
            return Prefix(ipaddress.IPv6Address(padded), mask)
        return Prefix(ipaddress.IPv4Address(padded), mask)

    def to_text(self) -> str:
        return "%s/%i" % (self._ip, self._mask)

    def to_network(self) -> Union[ipaddress.IPv4Network, ipaddress.IPv6Network]:
        """Construct an ipaddress.IPv[46]Network object, dropping any host bits."""
        return ipaddress.ip_network((self._ip, self._mask), strict=False)

    def sort_key(self) -> Tuple[int, int, int]:
        """Order by address family, then address, then mask length."""
        return (self._ip.version, int(self._ip), self._mask)

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return "Prefix(%r)" % self.to_text()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Prefix):
            return self._ip == other._ip and self._mask == other._mask
        return NotImplemented

    def __lt__(self, other: Prefix) -> bool:
        return self.sort_key() < other.sort_key()

    def __hash__(self) -> int:
        return hash((self._ip, self._mask))

    def __reduce__(self):
        # Prefix objects cross process boundaries when ingesting in parallel.
        return (Prefix, (self._ip, self._mask))
