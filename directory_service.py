"""
Directory Service

Reads AD sites, subnets and domain controllers. Two implementations:

- LdapDirectoryService queries a domain controller over LDAP (ldap3)
- InventoryDirectoryService reads the same data from a YAML/JSON inventory
  file, which is handy for offline audits and for tests
"""

import json
import logging
import re
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from ldap3 import Server, Connection, ALL, NTLM, SIMPLE, SUBTREE
from ldap3.core.exceptions import LDAPException

from audit_errors import DirectoryServiceError
from subnet_table import Site, SubnetEntry

# userAccountControl flag SERVER_TRUST_ACCOUNT, set on every DC computer object
DC_ACCOUNT_FILTER = "(&(objectCategory=computer)(userAccountControl:1.2.840.113556.1.4.803:=8192))"
SITE_FILTER = "(objectCategory=site)"
SUBNET_FILTER = "(objectCategory=subnet)"

LDAP_PORT = 389
LDAPS_PORT = 636
DEFAULT_PAGE_SIZE = 500
DEFAULT_LDAP_TIMEOUT = 10

AUTH_METHODS = {
    'ntlm': NTLM,
    'simple': SIMPLE,
}


@dataclass(frozen=True)
class DomainController:
    """A domain controller hosting DNS"""
    name: str
    ipv4: str
    site: str
    hostname: str = ""

    @property
    def address(self) -> str:
        """Best address to contact the DC on"""
        return self.ipv4 or self.hostname or self.name


class DirectoryService:
    """Interface for site/subnet/DC enumeration"""

    def list_sites(self) -> List[Site]:
        raise NotImplementedError

    def list_subnets(self) -> List[SubnetEntry]:
        raise NotImplementedError

    def list_domain_controllers(self) -> List[DomainController]:
        raise NotImplementedError

    def close(self):
        pass


def first_value(value: Any, default: Any = "") -> Any:
    """Collapse an ldap3 attribute value to a single item"""
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        return value[0] if value else default
    return value


def site_from_dn(dn: str) -> str:
    """Extract the site name from a site or server DN.

    'CN=NYC,CN=Sites,CN=Configuration,DC=corp,DC=com' -> 'NYC'
    'CN=DC1,CN=Servers,CN=NYC,CN=Sites,CN=Configuration,...' -> 'NYC'
    """
    if not dn:
        return ""
    parts = [part.strip() for part in str(dn).split(',')]
    for i, part in enumerate(parts):
        if part.upper() == 'CN=SITES' and i > 0:
            return re.sub(r'^CN=', '', parts[i - 1], flags=re.IGNORECASE)
    match = re.match(r'CN=([^,]+)', str(dn), flags=re.IGNORECASE)
    return match.group(1) if match else ""


def resolve_ipv4(hostname: str) -> str:
    """Resolve a host name to its first IPv4 address, '' if it does not resolve"""
    if not hostname:
        return ""
    try:
        infos = socket.getaddrinfo(hostname, None, socket.AF_INET)
    except (socket.gaierror, OSError):
        return ""
    return infos[0][4][0] if infos else ""


class LdapDirectoryService(DirectoryService):
    """Enumerates sites, subnets and DCs from Active Directory over LDAP"""

    def __init__(self, server: str, username: str = None, password: str = None,
                 auth_method: str = 'ntlm', use_ssl: bool = False,
                 page_size: int = DEFAULT_PAGE_SIZE, timeout: int = DEFAULT_LDAP_TIMEOUT,
                 connection: Connection = None, logger: logging.Logger = None):
        self.server = server
        self.username = username
        self.password = password
        self.auth_method = auth_method.lower()
        self.use_ssl = use_ssl
        self.page_size = page_size
        self.timeout = timeout
        self.logger = logger or logging.getLogger('dns_site_auditor.directory')

        if self.auth_method not in AUTH_METHODS:
            raise DirectoryServiceError(f"Unsupported LDAP authentication method: {auth_method}")

        self.conn = connection
        self.base_dn = ""
        self.config_dn = ""
        self.root_dn = ""
        if self.conn is not None:
            self._read_naming_contexts(self.conn)

    def open_connection(self, host: str) -> Connection:
        """Bind to a directory server with the configured credentials"""
        port = LDAPS_PORT if self.use_ssl else LDAP_PORT
        try:
            server = Server(host, port=port, use_ssl=self.use_ssl, get_info=ALL,
                            connect_timeout=self.timeout)
            conn = Connection(
                server,
                user=self._bind_user(),
                password=self.password,
                authentication=AUTH_METHODS[self.auth_method],
                auto_bind=True,
                receive_timeout=self.timeout,
            )
        except LDAPException as e:
            raise DirectoryServiceError(f"LDAP bind to {host} failed: {e}") from e

        self.logger.debug(f"LDAP bind to {host} successful")
        return conn

    def connect(self):
        if self.conn is not None:
            return
        self.logger.info(f"Connecting to directory server {self.server}")
        self.conn = self.open_connection(self.server)
        self._read_naming_contexts(self.conn)

    def _bind_user(self) -> Optional[str]:
        user = self.username
        # NTLM needs DOMAIN\user; accept user@domain too
        if user and self.auth_method == 'ntlm' and '\\' not in user and '@' in user:
            name, domain = user.split('@', 1)
            user = f"{domain.split('.')[0].upper()}\\{name}"
        return user

    def _read_naming_contexts(self, conn: Connection):
        info = conn.server.info
        other = getattr(info, 'other', {}) if info else {}
        self.base_dn = str(first_value(other.get('defaultNamingContext')))
        self.config_dn = str(first_value(other.get('configurationNamingContext')))
        self.root_dn = str(first_value(other.get('rootDomainNamingContext'), self.base_dn))

        if not self.base_dn or not self.config_dn:
            raise DirectoryServiceError("Directory server did not report its naming contexts")

        self.logger.info(f"Base DN: {self.base_dn}")
        self.logger.debug(f"Config DN: {self.config_dn}")

    def search(self, search_base: str, search_filter: str, attributes: List[str],
               conn: Connection = None) -> List[Dict[str, Any]]:
        """Paged subtree search returning the attribute dict of each entry"""
        conn = conn or self.conn
        if conn is None:
            self.connect()
            conn = self.conn

        try:
            results = conn.extend.standard.paged_search(
                search_base=search_base,
                search_filter=search_filter,
                search_scope=SUBTREE,
                attributes=attributes,
                paged_size=self.page_size,
                generator=False,
            )
        except LDAPException as e:
            raise DirectoryServiceError(f"LDAP search under {search_base} failed: {e}") from e

        entries = []
        for result in results or []:
            if result.get('type') != 'searchResEntry':
                continue
            attrs = dict(result.get('attributes', {}))
            attrs['distinguishedName'] = result.get('dn', '')
            entries.append(attrs)
        return entries

    def list_sites(self) -> List[Site]:
        self.connect()
        entries = self.search(f"CN=Sites,{self.config_dn}", SITE_FILTER,
                              ['name', 'location', 'description'])
        sites = [
            Site(
                name=str(first_value(entry.get('name'))),
                location=str(first_value(entry.get('location'))),
                description=str(first_value(entry.get('description'))),
            )
            for entry in entries
        ]
        self.logger.info(f"Found {len(sites)} sites")
        return sites

    def list_subnets(self) -> List[SubnetEntry]:
        self.connect()
        entries = self.search(f"CN=Subnets,CN=Sites,{self.config_dn}", SUBNET_FILTER,
                              ['name', 'siteObject', 'location', 'description'])
        subnets = []
        for entry in entries:
            cidr = str(first_value(entry.get('name')))
            site = site_from_dn(str(first_value(entry.get('siteObject'))))
            if not site:
                self.logger.warning(f"Subnet {cidr} is not associated with a site")
            subnets.append(SubnetEntry(
                cidr=cidr,
                site=site,
                location=str(first_value(entry.get('location'))),
                description=str(first_value(entry.get('description'))),
            ))
        self.logger.info(f"Found {len(subnets)} subnets")
        return subnets

    def list_domain_controllers(self) -> List[DomainController]:
        self.connect()
        entries = self.search(self.base_dn, DC_ACCOUNT_FILTER,
                              ['name', 'dNSHostName', 'serverReferenceBL'])
        dcs = []
        for entry in entries:
            name = str(first_value(entry.get('name'))).upper()
            hostname = str(first_value(entry.get('dNSHostName')))
            site = site_from_dn(str(first_value(entry.get('serverReferenceBL'))))
            ipv4 = resolve_ipv4(hostname)
            if not ipv4:
                self.logger.warning(f"Could not resolve an IPv4 address for {hostname or name}")
            dcs.append(DomainController(name=name, ipv4=ipv4, site=site, hostname=hostname))

        self.logger.info(f"Found {len(dcs)} domain controllers")
        return sorted(dcs, key=lambda dc: dc.name)

    def close(self):
        if self.conn is not None:
            try:
                self.conn.unbind()
            except LDAPException as e:
                self.logger.debug(f"Error during LDAP unbind: {e}")
            self.conn = None


def load_inventory(path: str) -> Dict[str, Any]:
    """Load an inventory file (YAML or JSON)"""
    inventory_path = Path(path)
    if not inventory_path.exists():
        raise DirectoryServiceError(f"Inventory file not found: {path}")

    try:
        with open(inventory_path, 'r', encoding='utf-8') as f:
            if inventory_path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DirectoryServiceError(f"Failed to parse inventory file {path}: {e}") from e

    if not isinstance(data, dict):
        raise DirectoryServiceError(f"Inventory file {path} must contain a mapping")
    return data


class InventoryDirectoryService(DirectoryService):
    """Directory data read from an inventory file.

    Expected layout::

        sites:
          - {name: NYC, location: New York}
        subnets:
          - {cidr: 10.0.0.0/24, site: NYC}
        domain_controllers:
          - {name: DC1, ipv4: 10.0.0.10, site: NYC}
    """

    def __init__(self, inventory: Dict[str, Any], logger: logging.Logger = None):
        self.inventory = inventory
        self.logger = logger or logging.getLogger('dns_site_auditor.directory')

    @classmethod
    def from_file(cls, path: str, logger: logging.Logger = None) -> 'InventoryDirectoryService':
        return cls(load_inventory(path), logger)

    def list_sites(self) -> List[Site]:
        sites = []
        for item in self.inventory.get('sites') or []:
            if isinstance(item, str):
                item = {'name': item}
            sites.append(Site(
                name=str(item['name']),
                location=str(item.get('location') or ""),
                description=str(item.get('description') or ""),
            ))
        return sites

    def list_subnets(self) -> List[SubnetEntry]:
        subnets = []
        for item in self.inventory.get('subnets') or []:
            subnets.append(SubnetEntry(
                cidr=str(item.get('cidr', '')),
                site=str(item.get('site') or ""),
                location=str(item.get('location') or ""),
                description=str(item.get('description') or ""),
            ))
        return subnets

    def list_domain_controllers(self) -> List[DomainController]:
        dcs = []
        for item in self.inventory.get('domain_controllers') or []:
            dcs.append(DomainController(
                name=str(item['name']),
                ipv4=str(item.get('ipv4') or ""),
                site=str(item.get('site') or ""),
                hostname=str(item.get('hostname') or ""),
            ))
        return dcs
