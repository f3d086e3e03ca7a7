"""
DNS Record Model

Typed DNS record variants used by the site auditor. Each record type carries
only the fields that are meaningful for it; record sources hand back text
rdata which is turned into the right variant by record_from_text().
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

logger = logging.getLogger('dns_site_auditor.records')


@dataclass(frozen=True)
class DNSRecord:
    """Fields shared by every record variant"""
    hostname: str
    zone_name: str
    ttl: int
    source_dc: str

    RECORD_TYPE: ClassVar[str] = ""

    @property
    def record_type(self) -> str:
        return self.RECORD_TYPE

    @property
    def is_static(self) -> bool:
        # TTL 0 marks a manually created record
        return self.ttl == 0

    @property
    def fqdn(self) -> str:
        return build_fqdn(self.hostname, self.zone_name)


@dataclass(frozen=True)
class ARecord(DNSRecord):
    address: str
    RECORD_TYPE: ClassVar[str] = "A"


@dataclass(frozen=True)
class AAAARecord(DNSRecord):
    address: str
    RECORD_TYPE: ClassVar[str] = "AAAA"


@dataclass(frozen=True)
class CNAMERecord(DNSRecord):
    target: str
    RECORD_TYPE: ClassVar[str] = "CNAME"


@dataclass(frozen=True)
class NSRecord(DNSRecord):
    target: str
    RECORD_TYPE: ClassVar[str] = "NS"


@dataclass(frozen=True)
class PTRRecord(DNSRecord):
    target: str
    RECORD_TYPE: ClassVar[str] = "PTR"


@dataclass(frozen=True)
class MXRecord(DNSRecord):
    preference: int
    exchange: str
    RECORD_TYPE: ClassVar[str] = "MX"


@dataclass(frozen=True)
class SRVRecord(DNSRecord):
    priority: int
    weight: int
    port: int
    target: str
    RECORD_TYPE: ClassVar[str] = "SRV"


@dataclass(frozen=True)
class TXTRecord(DNSRecord):
    text: str
    RECORD_TYPE: ClassVar[str] = "TXT"


@dataclass(frozen=True)
class SOARecord(DNSRecord):
    mname: str
    rname: str
    serial: int
    refresh: int
    retry: int
    expire: int
    minimum: int
    RECORD_TYPE: ClassVar[str] = "SOA"


@dataclass(frozen=True)
class GenericRecord(DNSRecord):
    """Any record type without a dedicated variant"""
    type_name: str
    data: str

    @property
    def record_type(self) -> str:
        return self.type_name


def build_fqdn(hostname: str, zone_name: str) -> str:
    """Join a record name with its zone, e.g. ('host', 'zone.com') -> 'host.zone.com'"""
    zone = zone_name.rstrip('.')
    name = hostname.strip()

    if name in ('', '@'):
        return zone
    if name.endswith('.'):
        return name.rstrip('.')
    if zone and (name.lower() == zone.lower() or name.lower().endswith(f".{zone.lower()}")):
        return name
    return f"{name}.{zone}" if zone else name


def record_from_text(hostname: str, record_type: str, ttl: int, data: str,
                     zone_name: str, source_dc: str) -> DNSRecord:
    """Build the typed record for a (type, rdata text) pair.

    Rdata that does not fit its type's layout falls back to GenericRecord so a
    single odd record never stops a zone from being read.
    """
    rtype = record_type.strip().upper()
    text = (data or "").strip()
    common = dict(hostname=hostname, zone_name=zone_name, ttl=int(ttl), source_dc=source_dc)

    try:
        if rtype == 'A':
            return ARecord(address=text, **common)
        if rtype == 'AAAA':
            return AAAARecord(address=text, **common)
        if rtype == 'CNAME':
            return CNAMERecord(target=text, **common)
        if rtype == 'NS':
            return NSRecord(target=text, **common)
        if rtype == 'PTR':
            return PTRRecord(target=text, **common)
        if rtype == 'TXT':
            return TXTRecord(text=text, **common)

        parts = text.split()
        if rtype == 'MX':
            preference, exchange = parts
            return MXRecord(preference=int(preference), exchange=exchange, **common)
        if rtype == 'SRV':
            priority, weight, port, target = parts
            return SRVRecord(priority=int(priority), weight=int(weight),
                             port=int(port), target=target, **common)
        if rtype == 'SOA':
            mname, rname, serial, refresh, retry, expire, minimum = parts
            return SOARecord(mname=mname, rname=rname, serial=int(serial),
                             refresh=int(refresh), retry=int(retry),
                             expire=int(expire), minimum=int(minimum), **common)
    except ValueError:
        logger.debug(f"Malformed {rtype} rdata for {hostname} in {zone_name}: {text!r}")

    return GenericRecord(type_name=rtype, data=text, **common)
