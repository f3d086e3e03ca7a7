"""
Site Classifier

Resolves an IPv4 address to the AD site whose subnet contains it.

Subnets are scanned in table order and the first containing subnet wins, so
overlapping subnets (10.0.0.0/8 and 10.1.0.0/16) are resolved by order rather
than by specificity. Pass strategy="longest" to pick the most specific subnet
instead.
"""

import logging
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Mapping, Optional, Union

from audit_errors import SubnetParseError
from subnet_table import Subnet, parse_cidr, parse_ipv4, prefix_mask

logger = logging.getLogger('dns_site_auditor.classifier')

FIRST_MATCH = "first"
LONGEST_MATCH = "longest"
MATCH_STRATEGIES = (FIRST_MATCH, LONGEST_MATCH)


@dataclass(frozen=True)
class SiteMatch:
    """The address falls inside a configured subnet"""
    site: str
    subnet: str
    location: str = ""


@dataclass(frozen=True)
class Unmatched:
    """No configured subnet contains the address"""


@dataclass(frozen=True)
class Invalid:
    """The address is not a parseable IPv4 address"""
    address: str


ClassificationResult = Union[SiteMatch, Unmatched, Invalid]


def subnet_contains(address: int, network: int, prefix_length: int) -> bool:
    """True if the masked address equals the masked network"""
    mask = prefix_mask(prefix_length)
    return (address & mask) == (network & mask)


def classify_ip(ip: Union[str, IPv4Address], table: Mapping[str, Subnet],
                strategy: str = FIRST_MATCH) -> ClassificationResult:
    """Classify an IPv4 address against a subnet table.

    Args:
        ip: Dotted-quad address, e.g. "10.0.1.5", or an IPv4Address
        table: CIDR key -> Subnet mapping (normally a SubnetTable)
        strategy: "first" (table order wins) or "longest" (most specific wins)

    Returns:
        SiteMatch, Unmatched or Invalid
    """
    if strategy not in MATCH_STRATEGIES:
        raise ValueError(f"Unknown match strategy: {strategy}")

    try:
        address = int(parse_ipv4(ip))
    except SubnetParseError:
        return Invalid(address=str(ip))

    best: Optional[Subnet] = None
    best_key = ""
    best_prefix = -1

    for key, subnet in table.items():
        try:
            network, prefix_length = parse_cidr(key)
        except SubnetParseError as e:
            logger.debug(f"Ignoring subnet entry {key!r} during lookup: {e}")
            continue

        if not subnet_contains(address, int(network), prefix_length):
            continue

        if strategy == FIRST_MATCH:
            return SiteMatch(site=subnet.site, subnet=key, location=subnet.location)

        if prefix_length > best_prefix:
            best, best_key, best_prefix = subnet, key, prefix_length

    if best is not None:
        return SiteMatch(site=best.site, subnet=best_key, location=best.location)

    return Unmatched()
