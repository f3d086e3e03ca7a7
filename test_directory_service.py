#!/usr/bin/env python3
"""
Tests for AD site, subnet and DC enumeration
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from ldap3.core.exceptions import LDAPException

from audit_errors import DirectoryServiceError
from directory_service import (InventoryDirectoryService, LdapDirectoryService, first_value,
                               load_inventory, site_from_dn)

BASE_DN = "DC=corp,DC=com"
CONFIG_DN = f"CN=Configuration,{BASE_DN}"


def entry(dn, **attributes):
    return {'type': 'searchResEntry', 'dn': dn, 'attributes': attributes}


SEARCH_RESULTS = {
    f"CN=Sites,{CONFIG_DN}": [
        entry(f"CN=NYC,CN=Sites,{CONFIG_DN}", name='NYC', location='New York', description=[]),
        entry(f"CN=LON,CN=Sites,{CONFIG_DN}", name='LON', location=[], description=['London office']),
        {'type': 'searchResRef', 'uri': ['ldap://forest.corp.com/']},
    ],
    f"CN=Subnets,CN=Sites,{CONFIG_DN}": [
        entry(f"CN=10.0.0.0/24,CN=Subnets,CN=Sites,{CONFIG_DN}", name='10.0.0.0/24',
              siteObject=f"CN=NYC,CN=Sites,{CONFIG_DN}", location=[], description=[]),
        entry(f"CN=10.9.0.0/24,CN=Subnets,CN=Sites,{CONFIG_DN}", name='10.9.0.0/24',
              siteObject=[], location=[], description=[]),
    ],
    BASE_DN: [
        entry(f"CN=dc2,OU=Domain Controllers,{BASE_DN}", name='dc2', dNSHostName='dc2.corp.com',
              serverReferenceBL=[f"CN=DC2,CN=Servers,CN=LON,CN=Sites,{CONFIG_DN}"]),
        entry(f"CN=dc1,OU=Domain Controllers,{BASE_DN}", name='dc1', dNSHostName='dc1.corp.com',
              serverReferenceBL=[f"CN=DC1,CN=Servers,CN=NYC,CN=Sites,{CONFIG_DN}"]),
    ],
}


@pytest.fixture
def conn():
    connection = MagicMock()
    connection.server.info.other = {
        'defaultNamingContext': [BASE_DN],
        'configurationNamingContext': [CONFIG_DN],
        'rootDomainNamingContext': [BASE_DN],
    }
    connection.extend.standard.paged_search.side_effect = \
        lambda search_base, search_filter, **kwargs: SEARCH_RESULTS.get(search_base, [])
    return connection


def test_site_from_dn():
    assert site_from_dn(f"CN=NYC,CN=Sites,{CONFIG_DN}") == "NYC"
    assert site_from_dn(f"CN=DC1,CN=Servers,CN=LON,CN=Sites,{CONFIG_DN}") == "LON"
    assert site_from_dn("CN=Orphan") == "Orphan"
    assert site_from_dn("") == ""


def test_first_value():
    assert first_value(['a', 'b']) == 'a'
    assert first_value([]) == ""
    assert first_value(None, 'x') == 'x'
    assert first_value('plain') == 'plain'


def test_naming_contexts_read_from_root_dse(conn):
    directory = LdapDirectoryService("dc1.corp.com", connection=conn)
    assert directory.base_dn == BASE_DN
    assert directory.config_dn == CONFIG_DN


def test_missing_naming_contexts(conn):
    conn.server.info.other = {}
    with pytest.raises(DirectoryServiceError):
        LdapDirectoryService("dc1.corp.com", connection=conn)


def test_list_sites(conn):
    sites = LdapDirectoryService("dc1.corp.com", connection=conn).list_sites()
    assert [(s.name, s.location, s.description) for s in sites] == [
        ('NYC', 'New York', ''),
        ('LON', '', 'London office'),
    ]


def test_list_subnets(conn):
    subnets = LdapDirectoryService("dc1.corp.com", connection=conn).list_subnets()
    assert [(s.cidr, s.site) for s in subnets] == [('10.0.0.0/24', 'NYC'), ('10.9.0.0/24', '')]


def test_list_domain_controllers(conn):
    addresses = {'dc1.corp.com': '10.0.0.10', 'dc2.corp.com': ''}
    with patch('directory_service.resolve_ipv4', side_effect=addresses.get):
        dcs = LdapDirectoryService("dc1.corp.com", connection=conn).list_domain_controllers()

    assert [(dc.name, dc.site, dc.ipv4) for dc in dcs] == [('DC1', 'NYC', '10.0.0.10'), ('DC2', 'LON', '')]
    assert dcs[1].address == 'dc2.corp.com'


def test_search_failure_is_wrapped(conn):
    conn.extend.standard.paged_search.side_effect = LDAPException("timeout")
    with pytest.raises(DirectoryServiceError):
        LdapDirectoryService("dc1.corp.com", connection=conn).list_sites()


def test_open_connection_failure_is_wrapped():
    directory = LdapDirectoryService("dc1.corp.com", username="auditor@corp.com", password="pw")
    with patch('directory_service.Connection', side_effect=LDAPException("invalidCredentials")):
        with pytest.raises(DirectoryServiceError):
            directory.connect()


def test_ntlm_user_format():
    assert LdapDirectoryService("dc1", username="auditor@corp.com")._bind_user() == "CORP\\auditor"
    assert LdapDirectoryService("dc1", username="CORP\\auditor")._bind_user() == "CORP\\auditor"
    assert LdapDirectoryService("dc1", username="auditor@corp.com", auth_method='simple')._bind_user() == \
        "auditor@corp.com"


def test_unsupported_auth_method():
    with pytest.raises(DirectoryServiceError):
        LdapDirectoryService("dc1", auth_method='kerberos')


def test_inventory_directory(tmp_path):
    path = tmp_path / "inventory.json"
    path.write_text(json.dumps({
        'sites': ['NYC', {'name': 'LON', 'location': 'London'}],
        'subnets': [{'cidr': '10.0.0.0/24', 'site': 'NYC'}],
        'domain_controllers': [{'name': 'DC1', 'ipv4': '10.0.0.10', 'site': 'NYC'}],
    }), encoding='utf-8')

    directory = InventoryDirectoryService.from_file(str(path))
    assert [s.name for s in directory.list_sites()] == ['NYC', 'LON']
    assert directory.list_subnets()[0].cidr == '10.0.0.0/24'
    assert directory.list_domain_controllers()[0].ipv4 == '10.0.0.10'


def test_load_inventory_errors(tmp_path):
    with pytest.raises(DirectoryServiceError):
        load_inventory(str(tmp_path / "missing.yaml"))

    bad = tmp_path / "bad.yaml"
    bad.write_text("sites: [unclosed", encoding='utf-8')
    with pytest.raises(DirectoryServiceError):
        load_inventory(str(bad))

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("just a string", encoding='utf-8')
    with pytest.raises(DirectoryServiceError):
        load_inventory(str(scalar))
