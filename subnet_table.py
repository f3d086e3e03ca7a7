"""
Subnet Table Builder

Turns the AD subnet list (CIDR, site, location, description) into the lookup
table used by the site classifier. Entries are stored under the CIDR string
exactly as AD returned it; a non-canonical entry such as 192.168.1.5/24 is
kept as-is and behaves like 192.168.1.0/24 because matching masks both sides.
"""

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from ipaddress import IPv4Address, AddressValueError
from collections.abc import Mapping
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from audit_errors import SubnetParseError, InvalidAddressError, InvalidPrefixError

IPV4_BITS = 32
ALL_ONES = 0xFFFFFFFF


@dataclass(frozen=True)
class SubnetEntry:
    """Raw subnet row as returned by the directory service"""
    cidr: str
    site: str
    location: str = ""
    description: str = ""


@dataclass(frozen=True)
class Subnet:
    """A parsed subnet keyed by its original CIDR string"""
    key: str
    network: IPv4Address
    prefix_length: int
    site: str
    location: str = ""
    description: str = ""

    @property
    def mask(self) -> int:
        return prefix_mask(self.prefix_length)

    @property
    def is_canonical(self) -> bool:
        return int(self.network) & self.mask == int(self.network)


@dataclass
class Site:
    """An AD site and the subnet keys assigned to it"""
    name: str
    location: str = ""
    description: str = ""
    subnets: Set[str] = field(default_factory=set)


@dataclass(frozen=True)
class SkippedSubnet:
    cidr: str
    site: str
    reason: str


def prefix_mask(prefix_length: int) -> int:
    """32-bit network mask for a prefix length (0 -> 0, 32 -> all ones)"""
    if prefix_length < 0 or prefix_length > IPV4_BITS:
        raise InvalidPrefixError(f"Prefix length {prefix_length} is outside 0-{IPV4_BITS}")
    # /0 matches everything; never shift by the full width
    if prefix_length == 0:
        return 0
    return (ALL_ONES << (IPV4_BITS - prefix_length)) & ALL_ONES


def parse_ipv4(text: Union[str, IPv4Address]) -> IPv4Address:
    """Parse a dotted-quad IPv4 address (exactly four octets, each 0-255)"""
    if isinstance(text, IPv4Address):
        return text
    candidate = (text or "").strip()
    try:
        return IPv4Address(candidate)
    except AddressValueError as e:
        raise InvalidAddressError(f"'{candidate}' is not a valid IPv4 address: {e}") from e


def parse_prefix_length(text: str) -> int:
    candidate = (text or "").strip()
    if not (candidate.isascii() and candidate.isdigit()):
        raise InvalidPrefixError(f"Prefix length '{candidate}' is not a number")
    prefix_length = int(candidate)
    if prefix_length > IPV4_BITS:
        raise InvalidPrefixError(f"Prefix length {prefix_length} is outside 0-{IPV4_BITS}")
    return prefix_length


@lru_cache(maxsize=None)
def parse_cidr(cidr: str) -> Tuple[IPv4Address, int]:
    """Split 'a.b.c.d/n' into (network address, prefix length).

    The network address is returned unmasked; non-canonical input is allowed.
    """
    if not isinstance(cidr, str) or cidr.count('/') != 1:
        raise SubnetParseError(f"'{cidr}' cannot be split into network and prefix parts")

    network_text, prefix_text = cidr.split('/')
    if not network_text.strip() or not prefix_text.strip():
        raise SubnetParseError(f"'{cidr}' cannot be split into network and prefix parts")

    return parse_ipv4(network_text), parse_prefix_length(prefix_text)


def parse_subnet(entry: SubnetEntry) -> Subnet:
    network, prefix_length = parse_cidr(entry.cidr)
    return Subnet(
        key=entry.cidr,
        network=network,
        prefix_length=prefix_length,
        site=entry.site,
        location=entry.location or "",
        description=entry.description or "",
    )


class SubnetTable(Mapping):
    """Read-only mapping of CIDR key -> Subnet, plus the entries that were skipped"""

    def __init__(self, subnets: Optional[Dict[str, Subnet]] = None,
                 skipped: Optional[List[SkippedSubnet]] = None):
        self._subnets: Dict[str, Subnet] = dict(subnets or {})
        self.skipped: List[SkippedSubnet] = list(skipped or [])

    def __getitem__(self, key: str) -> Subnet:
        return self._subnets[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._subnets)

    def __len__(self) -> int:
        return len(self._subnets)

    def __repr__(self) -> str:
        return f"SubnetTable({len(self._subnets)} subnets, {len(self.skipped)} skipped)"

    def site_names(self) -> Set[str]:
        return {subnet.site for subnet in self._subnets.values()}


def build_subnet_table(entries: Iterable[SubnetEntry],
                       logger: logging.Logger = None) -> SubnetTable:
    """Build the subnet lookup table, skipping entries that fail to parse"""
    logger = logger or logging.getLogger('dns_site_auditor.subnets')

    subnets: Dict[str, Subnet] = {}
    skipped: List[SkippedSubnet] = []

    for entry in entries:
        try:
            subnet = parse_subnet(entry)
        except SubnetParseError as e:
            logger.warning(f"Skipping subnet {entry.cidr!r} (site: {entry.site}): {e}")
            skipped.append(SkippedSubnet(cidr=str(entry.cidr), site=entry.site, reason=str(e)))
            continue

        if subnet.key in subnets:
            previous = subnets[subnet.key]
            logger.warning(f"Duplicate subnet {subnet.key}: site {previous.site} replaced by {subnet.site}")
        if not subnet.is_canonical:
            logger.info(f"Subnet {subnet.key} is not canonical; matching treats it as "
                        f"{IPv4Address(int(subnet.network) & subnet.mask)}/{subnet.prefix_length}")

        subnets[subnet.key] = subnet

    logger.info(f"Built subnet table with {len(subnets)} subnets ({len(skipped)} skipped)")
    return SubnetTable(subnets, skipped)


def assign_subnets_to_sites(sites: Iterable[Site], table: SubnetTable,
                            logger: logging.Logger = None) -> Dict[str, Site]:
    """Attach each subnet key to its site.

    Subnets pointing at a site the directory did not list still get a Site entry
    so they show up in reports.
    """
    logger = logger or logging.getLogger('dns_site_auditor.subnets')

    by_name: Dict[str, Site] = {}
    for site in sites:
        by_name[site.name.lower()] = Site(
            name=site.name,
            location=site.location,
            description=site.description,
            subnets=set(site.subnets),
        )

    for key, subnet in table.items():
        site = by_name.get(subnet.site.lower())
        if site is None:
            logger.warning(f"Subnet {key} references unknown site '{subnet.site}'")
            site = Site(name=subnet.site)
            by_name[subnet.site.lower()] = site
        site.subnets.add(key)

    for site in by_name.values():
        if not site.subnets:
            logger.debug(f"Site {site.name} has no subnets assigned")

    return {site.name: site for site in by_name.values()}
