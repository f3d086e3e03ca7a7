"""
Mismatch Detector

Classifies the A records served by a domain controller and reports the ones
whose address belongs to a different AD site than the DC itself.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence

from audit_errors import DCTimeoutError, RecordSourceError
from directory_service import DomainController
from dns_records import ARecord, DNSRecord
from record_sources import RecordSource
from site_classifier import FIRST_MATCH, Invalid, SiteMatch, Unmatched, classify_ip
from subnet_table import Subnet

# Never classified: loopback and APIPA addresses are host-local
SKIPPED_ADDRESS_PREFIXES = ('127.', '169.254.')

UNKNOWN_SITE = "Unknown"
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


class MismatchType(Enum):
    """Why a record was reported"""
    DIFFERENT_SITE = "DifferentSite"
    UNMATCHED_SUBNET = "UnmatchedSubnet"


@dataclass(frozen=True)
class MismatchRecord:
    """A DNS record whose address does not belong to the hosting DC's site"""
    dc_name: str
    dc_site: str
    dc_ip: str
    zone_name: str
    record_name: str
    fqdn: str
    record_type: str
    ip_address: str
    ip_site: str
    ip_subnet: str
    ip_location: str
    mismatch_type: MismatchType
    ttl: int
    is_static: bool
    timestamp: str


@dataclass(frozen=True)
class DetectorOptions:
    """Record filtering options for the detector"""
    include_dynamic: bool = False
    include_unknown_subnets: bool = False
    match_strategy: str = FIRST_MATCH


@dataclass
class DCCollection:
    """Everything collected from one DC"""
    records: List[MismatchRecord] = field(default_factory=list)
    zones_processed: int = 0
    zones_failed: int = 0


def is_skipped_address(address: str) -> bool:
    return address.startswith(SKIPPED_ADDRESS_PREFIXES)


def same_site(a: str, b: str) -> bool:
    # AD site names are case-insensitive
    return a.strip().lower() == b.strip().lower()


def detect_mismatches(dc: DomainController, records: Iterable[DNSRecord],
                      table: Mapping[str, Subnet], options: DetectorOptions = None,
                      logger: logging.Logger = None) -> List[MismatchRecord]:
    """Return the mismatch records for one DC's DNS records.

    Only A records are classified. Loopback and link-local addresses are always
    ignored, and dynamic records (TTL > 0) are ignored unless
    options.include_dynamic is set. Addresses in no known subnet are reported
    as UnmatchedSubnet only when options.include_unknown_subnets is set.
    """
    options = options or DetectorOptions()
    logger = logger or logging.getLogger('dns_site_auditor.detector')
    timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
    mismatches = []

    for record in records:
        if not isinstance(record, ARecord):
            continue
        if is_skipped_address(record.address):
            continue
        if not options.include_dynamic and not record.is_static:
            continue

        result = classify_ip(record.address, table, options.match_strategy)

        if isinstance(result, Invalid):
            logger.warning(f"{dc.name}: {record.fqdn} has an invalid address '{result.address}'")
            continue

        if isinstance(result, Unmatched):
            if not options.include_unknown_subnets:
                continue
            mismatch_type = MismatchType.UNMATCHED_SUBNET
            ip_site, ip_subnet, ip_location = UNKNOWN_SITE, "", ""
        elif isinstance(result, SiteMatch):
            if same_site(result.site, dc.site):
                continue
            mismatch_type = MismatchType.DIFFERENT_SITE
            ip_site, ip_subnet, ip_location = result.site, result.subnet, result.location
        else:
            raise TypeError(f"Unexpected classification result: {result!r}")

        mismatches.append(MismatchRecord(
            dc_name=dc.name,
            dc_site=dc.site,
            dc_ip=dc.ipv4,
            zone_name=record.zone_name,
            record_name=record.hostname,
            fqdn=record.fqdn,
            record_type=record.record_type,
            ip_address=record.address,
            ip_site=ip_site,
            ip_subnet=ip_subnet,
            ip_location=ip_location,
            mismatch_type=mismatch_type,
            ttl=record.ttl,
            is_static=record.is_static,
            timestamp=timestamp,
        ))

    return mismatches


def zone_selected(zone_name: str, zone_filter: Sequence[str]) -> bool:
    if not zone_filter:
        return True
    wanted = {name.rstrip('.').lower() for name in zone_filter}
    return zone_name.rstrip('.').lower() in wanted


def collect_dc_mismatches(dc: DomainController, source: RecordSource,
                          table: Mapping[str, Subnet], options: DetectorOptions = None,
                          zone_filter: Sequence[str] = (), deadline: Optional[float] = None,
                          logger: logging.Logger = None) -> DCCollection:
    """Walk every forward zone on a DC and detect mismatches in each.

    A zone whose records cannot be read is logged and skipped. Failure to list
    the zones at all is raised as RecordSourceError. ``deadline`` is a
    time.monotonic() value checked before and
    after each zone is read.
    """
    logger = logger or logging.getLogger('dns_site_auditor.detector')
    collection = DCCollection()

    zones = source.list_zones(dc)
    logger.debug(f"{dc.name}: {len(zones)} zones reported")

    for zone in zones:
        if deadline is not None and time.monotonic() > deadline:
            raise DCTimeoutError(f"{dc.name} ran past its deadline while reading {zone.name}")

        if zone.is_reverse_lookup or zone.is_auto_created:
            continue
        if not zone_selected(zone.name, zone_filter):
            continue

        try:
            records = source.list_records(dc, zone)
        except RecordSourceError as e:
            logger.warning(f"{dc.name}: skipping zone {zone.name}: {e}")
            collection.zones_failed += 1
            continue

        if deadline is not None and time.monotonic() > deadline:
            raise DCTimeoutError(f"{dc.name} ran past its deadline while reading {zone.name}")

        found = detect_mismatches(dc, records, table, options, logger)
        logger.debug(f"{dc.name}: zone {zone.name} has {len(records)} records, {len(found)} mismatches")
        collection.records.extend(found)
        collection.zones_processed += 1

    return collection
