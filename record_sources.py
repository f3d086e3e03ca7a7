"""
DNS Record Sources

Enumerate the zones hosted by a domain controller and the resource records in
each zone. Three implementations:

- LdapDnsRecordSource: AD-integrated zones read straight from the DC's
  directory partitions (dnsZone / dnsNode objects)
- ZoneTransferRecordSource: AXFR of a configured zone list (dnspython)
- InventoryRecordSource: zones and records from an inventory file
"""

import logging
import struct
import threading
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Dict, Iterable, List, Optional, Tuple

import dns.exception
import dns.query
import dns.rdatatype
import dns.zone
from ldap3 import Connection
from ldap3.core.exceptions import LDAPException

from audit_errors import DirectoryServiceError, RecordSourceError
from directory_service import DomainController, LdapDirectoryService, first_value
from dns_records import DNSRecord, record_from_text

REVERSE_ZONE_SUFFIXES = ('.in-addr.arpa', '.ip6.arpa')

# Zones the DNS server creates on its own; they never hold site data
AUTO_CREATED_ZONES = {'0.in-addr.arpa', '127.in-addr.arpa', '255.in-addr.arpa',
                      'trustanchors', '..trustanchors', 'rootdnsservers', '..cache'}

ZONE_FILTER = "(objectClass=dnsZone)"
NODE_FILTER = "(objectClass=dnsNode)"

# DNS_RPC_RECORD header (MS-DNSP 2.3.2.2): DataLength, Type, Version, Rank,
# Flags, Serial, TtlSeconds (big-endian), Reserved, TimeStamp
DNS_RECORD_HEADER = struct.Struct('<HHBBHI')
DNS_RECORD_HEADER_SIZE = 24

DNS_TYPE_ZERO = 0x0000  # tombstone entry
DNS_TYPE_NAMES = {
    0x0001: 'A',
    0x0002: 'NS',
    0x0005: 'CNAME',
    0x0006: 'SOA',
    0x000C: 'PTR',
    0x000F: 'MX',
    0x0010: 'TXT',
    0x001C: 'AAAA',
    0x0021: 'SRV',
}

DEFAULT_XFR_TIMEOUT = 30


@dataclass(frozen=True)
class ZoneInfo:
    """A zone hosted on a DNS server"""
    name: str
    is_reverse_lookup: bool = False
    zone_type: str = "Primary"
    is_auto_created: bool = False
    container_dn: str = ""


@dataclass(frozen=True)
class RawRecord:
    """A decoded dnsRecord value before it becomes a typed record"""
    record_type: str
    ttl: int
    data: str
    is_static: bool


def is_reverse_zone(name: str) -> bool:
    return name.lower().rstrip('.').endswith(REVERSE_ZONE_SUFFIXES) or \
        name.lower().rstrip('.') in ('in-addr.arpa', 'ip6.arpa')


def is_auto_created_zone(name: str) -> bool:
    return name.lower().rstrip('.') in AUTO_CREATED_ZONES


def make_zone_info(name: str, zone_type: str = "Primary", container_dn: str = "") -> ZoneInfo:
    return ZoneInfo(
        name=name,
        is_reverse_lookup=is_reverse_zone(name),
        zone_type=zone_type,
        is_auto_created=is_auto_created_zone(name),
        container_dn=container_dn,
    )


class RecordSource:
    """Interface for zone and record enumeration on a DC"""

    def list_zones(self, dc: DomainController) -> List[ZoneInfo]:
        raise NotImplementedError

    def list_records(self, dc: DomainController, zone: ZoneInfo) -> List[DNSRecord]:
        raise NotImplementedError

    def close(self):
        pass


def read_count_name(data: bytes, offset: int) -> Tuple[str, int]:
    """Decode a DNS_COUNT_NAME at offset, returning (fqdn, offset after it)"""
    if offset + 2 > len(data):
        raise ValueError("Truncated DNS_COUNT_NAME")

    label_count = data[offset + 1]
    pos = offset + 2
    labels = []
    for _ in range(label_count):
        if pos >= len(data):
            raise ValueError("Truncated DNS_COUNT_NAME")
        length = data[pos]
        if length == 0:
            break
        if pos + 1 + length > len(data):
            raise ValueError("Truncated DNS_COUNT_NAME label")
        labels.append(data[pos + 1:pos + 1 + length].decode('utf-8', errors='replace'))
        pos += 1 + length

    # Skip the terminating zero-length label
    if pos < len(data) and data[pos] == 0:
        pos += 1
    return '.'.join(labels) + '.', pos


def decode_dns_record(blob: bytes) -> Optional[RawRecord]:
    """Decode one dnsRecord attribute value.

    Returns None for tombstone entries. Static records (aging timestamp 0) are
    reported with TTL 0, the convention the audit uses for static entries.
    """
    if len(blob) < DNS_RECORD_HEADER_SIZE:
        raise ValueError(f"dnsRecord value too short ({len(blob)} bytes)")

    data_length, record_type, _version, _rank, _flags, _serial = DNS_RECORD_HEADER.unpack_from(blob, 0)
    ttl_seconds = struct.unpack_from('>I', blob, 12)[0]
    timestamp = struct.unpack_from('<I', blob, 20)[0]
    data = blob[DNS_RECORD_HEADER_SIZE:DNS_RECORD_HEADER_SIZE + data_length]

    if record_type == DNS_TYPE_ZERO:
        return None

    type_name = DNS_TYPE_NAMES.get(record_type, f"TYPE{record_type}")

    if type_name == 'A':
        text = str(IPv4Address(data[:4]))
    elif type_name == 'AAAA':
        text = str(IPv6Address(data[:16]))
    elif type_name in ('NS', 'CNAME', 'PTR'):
        text, _ = read_count_name(data, 0)
    elif type_name == 'MX':
        preference = struct.unpack_from('>H', data, 0)[0]
        exchange, _ = read_count_name(data, 2)
        text = f"{preference} {exchange}"
    elif type_name == 'SRV':
        priority, weight, port = struct.unpack_from('>HHH', data, 0)
        target, _ = read_count_name(data, 6)
        text = f"{priority} {weight} {port} {target}"
    elif type_name == 'SOA':
        serial, refresh, retry, expire, minimum = struct.unpack_from('>IIIII', data, 0)
        mname, pos = read_count_name(data, 20)
        rname, _ = read_count_name(data, pos)
        text = f"{mname} {rname} {serial} {refresh} {retry} {expire} {minimum}"
    elif type_name == 'TXT':
        strings = []
        pos = 0
        while pos < len(data):
            length = data[pos]
            strings.append(data[pos + 1:pos + 1 + length].decode('utf-8', errors='replace'))
            pos += 1 + length
        text = ' '.join(f'"{s}"' for s in strings)
    else:
        text = data.hex()

    is_static = timestamp == 0
    return RawRecord(
        record_type=type_name,
        ttl=0 if is_static else ttl_seconds,
        data=text,
        is_static=is_static,
    )


class LdapDnsRecordSource(RecordSource):
    """Reads AD-integrated zones from each DC's own copy of the DNS partitions"""

    def __init__(self, directory: LdapDirectoryService, logger: logging.Logger = None):
        self.directory = directory
        self.logger = logger or logging.getLogger('dns_site_auditor.records')
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

    def _connection_for(self, dc: DomainController) -> Connection:
        host = dc.hostname or dc.address
        with self._lock:
            conn = self._connections.get(host)
        if conn is not None:
            return conn

        try:
            conn = self.directory.open_connection(host)
        except DirectoryServiceError as e:
            raise RecordSourceError(str(e)) from e

        with self._lock:
            self._connections[host] = conn
        return conn

    def _dns_containers(self, conn: Connection) -> List[str]:
        info = conn.server.info
        other = getattr(info, 'other', {}) if info else {}
        base_dn = str(first_value(other.get('defaultNamingContext'), self.directory.base_dn))
        root_dn = str(first_value(other.get('rootDomainNamingContext'), base_dn))
        return [
            f"CN=MicrosoftDNS,DC=DomainDnsZones,{base_dn}",
            f"CN=MicrosoftDNS,DC=ForestDnsZones,{root_dn}",
            f"CN=MicrosoftDNS,CN=System,{base_dn}",
        ]

    def list_zones(self, dc: DomainController) -> List[ZoneInfo]:
        conn = self._connection_for(dc)
        zones: Dict[str, ZoneInfo] = {}

        for container in self._dns_containers(conn):
            try:
                entries = self.directory.search(container, ZONE_FILTER, ['name'], conn=conn)
            except DirectoryServiceError as e:
                # Not every forest has all three partitions
                self.logger.debug(f"{dc.name}: no zones under {container}: {e}")
                continue

            for entry in entries:
                name = str(first_value(entry.get('name')))
                if name and name.lower() not in zones:
                    zones[name.lower()] = make_zone_info(name, "ADIntegrated", entry['distinguishedName'])

        self.logger.debug(f"{dc.name}: found {len(zones)} zones")
        return list(zones.values())

    def list_records(self, dc: DomainController, zone: ZoneInfo) -> List[DNSRecord]:
        if not zone.container_dn:
            raise RecordSourceError(f"Zone {zone.name} has no directory location")

        conn = self._connection_for(dc)
        try:
            entries = self.directory.search(zone.container_dn, NODE_FILTER,
                                            ['name', 'dnsRecord', 'dNSTombstoned'], conn=conn)
        except DirectoryServiceError as e:
            raise RecordSourceError(f"Could not read zone {zone.name} from {dc.name}: {e}") from e

        records = []
        for entry in entries:
            if first_value(entry.get('dNSTombstoned'), False) is True:
                continue

            hostname = str(first_value(entry.get('name')))
            values = entry.get('dnsRecord') or []
            if isinstance(values, bytes):
                values = [values]

            for blob in values:
                try:
                    raw = decode_dns_record(blob)
                except (ValueError, struct.error) as e:
                    self.logger.debug(f"{dc.name}: undecodable record {hostname} in {zone.name}: {e}")
                    continue
                if raw is None:
                    continue
                records.append(record_from_text(hostname, raw.record_type, raw.ttl, raw.data,
                                                zone.name, dc.name))

        self.logger.debug(f"{dc.name}: read {len(records)} records from {zone.name}")
        return records

    def close(self):
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            try:
                conn.unbind()
            except LDAPException as e:
                self.logger.debug(f"Error during LDAP unbind: {e}")


class ZoneTransferRecordSource(RecordSource):
    """Pulls each configured zone from the DC with AXFR.

    Zone transfers carry real TTLs only, so static and dynamic records cannot be
    told apart; audits through this source normally run with include_dynamic.
    """

    def __init__(self, zones: Iterable[str], timeout: int = DEFAULT_XFR_TIMEOUT,
                 port: int = 53, logger: logging.Logger = None):
        self.zones = [zone.rstrip('.') for zone in zones]
        self.timeout = timeout
        self.port = port
        self.logger = logger or logging.getLogger('dns_site_auditor.records')

    def list_zones(self, dc: DomainController) -> List[ZoneInfo]:
        return [make_zone_info(name) for name in self.zones]

    def list_records(self, dc: DomainController, zone: ZoneInfo) -> List[DNSRecord]:
        if not dc.ipv4:
            raise RecordSourceError(f"{dc.name} has no IPv4 address for a zone transfer")

        try:
            xfr_zone = dns.zone.from_xfr(
                dns.query.xfr(dc.ipv4, zone.name, port=self.port,
                              timeout=self.timeout, lifetime=self.timeout * 2)
            )
        except (dns.exception.DNSException, OSError, EOFError) as e:
            raise RecordSourceError(f"Zone transfer of {zone.name} from {dc.name} failed: {e}") from e

        records = []
        for name, node in xfr_zone.nodes.items():
            for rdataset in node.rdatasets:
                rtype = dns.rdatatype.to_text(rdataset.rdtype)
                for rdata in rdataset:
                    records.append(record_from_text(name.to_text(), rtype, rdataset.ttl,
                                                    rdata.to_text(), zone.name, dc.name))

        self.logger.debug(f"{dc.name}: transferred {len(records)} records from {zone.name}")
        return records


class InventoryRecordSource(RecordSource):
    """Zones and records from an inventory file.

    ``zones`` is shared by every DC; ``dc_zones`` maps a DC name to its own zone
    list when a DC serves something different::

        zones:
          - name: corp.example.com
            records:
              - {hostname: app01, type: A, ttl: 0, data: 10.0.1.5}
    """

    def __init__(self, inventory: Dict[str, Any], logger: logging.Logger = None):
        self.inventory = inventory
        self.logger = logger or logging.getLogger('dns_site_auditor.records')

    def _zones_for(self, dc: DomainController) -> List[Dict[str, Any]]:
        per_dc = self.inventory.get('dc_zones') or {}
        for name, zones in per_dc.items():
            if name.lower() == dc.name.lower():
                return zones or []
        return self.inventory.get('zones') or []

    def list_zones(self, dc: DomainController) -> List[ZoneInfo]:
        zones = []
        for item in self._zones_for(dc):
            info = make_zone_info(str(item['name']), str(item.get('type') or "Primary"))
            if 'reverse' in item:
                info = ZoneInfo(info.name, bool(item['reverse']), info.zone_type,
                                info.is_auto_created, info.container_dn)
            zones.append(info)
        return zones

    def list_records(self, dc: DomainController, zone: ZoneInfo) -> List[DNSRecord]:
        for item in self._zones_for(dc):
            if str(item['name']).lower() != zone.name.lower():
                continue
            return [
                record_from_text(str(row.get('hostname', '@')), str(row['type']),
                                 int(row.get('ttl') or 0), str(row.get('data', '')),
                                 zone.name, dc.name)
                for row in item.get('records') or []
            ]
        raise RecordSourceError(f"Zone {zone.name} not found for {dc.name}")
