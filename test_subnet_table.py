#!/usr/bin/env python3
"""
Tests for the subnet table builder
"""

import logging

import pytest

from audit_errors import InvalidAddressError, InvalidPrefixError, SubnetParseError
from subnet_table import (Site, SubnetEntry, assign_subnets_to_sites, build_subnet_table,
                          parse_cidr, parse_ipv4, prefix_mask)


def test_prefix_mask_edges():
    assert prefix_mask(0) == 0
    assert prefix_mask(8) == 0xFF000000
    assert prefix_mask(24) == 0xFFFFFF00
    assert prefix_mask(32) == 0xFFFFFFFF


def test_prefix_mask_rejects_out_of_range():
    with pytest.raises(InvalidPrefixError):
        prefix_mask(33)
    with pytest.raises(InvalidPrefixError):
        prefix_mask(-1)


def test_parse_cidr():
    network, prefix = parse_cidr("10.1.0.0/16")
    assert str(network) == "10.1.0.0"
    assert prefix == 16


@pytest.mark.parametrize("cidr", ["10.0.0.0", "10.0.0.0/24/1", "/24", "10.0.0.0/"])
def test_parse_cidr_unsplittable(cidr):
    with pytest.raises(SubnetParseError):
        parse_cidr(cidr)


@pytest.mark.parametrize("cidr", ["10.0.0/24", "10.0.0.256/24", "a.b.c.d/8", "10.0.0.0.0/8"])
def test_parse_cidr_bad_address(cidr):
    with pytest.raises(InvalidAddressError):
        parse_cidr(cidr)


@pytest.mark.parametrize("cidr", ["10.0.0.0/33", "10.0.0.0/-1", "10.0.0.0/x"])
def test_parse_cidr_bad_prefix(cidr):
    with pytest.raises(InvalidPrefixError):
        parse_cidr(cidr)


def test_parse_errors_are_value_errors():
    with pytest.raises(ValueError):
        parse_ipv4("not-an-ip")


def test_build_skips_malformed_entries():
    entries = [
        SubnetEntry("10.0.0.0/24", "SiteA"),
        SubnetEntry("10.0.1.0/40", "SiteB"),
        SubnetEntry("garbage", "SiteC"),
        SubnetEntry("10.0.2.0/24", "SiteD"),
    ]
    table = build_subnet_table(entries)

    assert list(table) == ["10.0.0.0/24", "10.0.2.0/24"]
    assert [skipped.cidr for skipped in table.skipped] == ["10.0.1.0/40", "garbage"]
    assert table.skipped[0].site == "SiteB"


def test_build_keeps_non_canonical_key(caplog):
    with caplog.at_level(logging.INFO, logger='dns_site_auditor.subnets'):
        table = build_subnet_table([SubnetEntry("192.168.1.5/24", "Branch")])

    subnet = table["192.168.1.5/24"]
    assert str(subnet.network) == "192.168.1.5"
    assert not subnet.is_canonical
    assert "not canonical" in caplog.text


def test_duplicate_cidr_last_write_wins(caplog):
    with caplog.at_level(logging.WARNING, logger='dns_site_auditor.subnets'):
        table = build_subnet_table([
            SubnetEntry("10.0.0.0/24", "SiteA"),
            SubnetEntry("10.0.5.0/24", "SiteC"),
            SubnetEntry("10.0.0.0/24", "SiteB"),
        ])

    assert len(table) == 2
    assert table["10.0.0.0/24"].site == "SiteB"
    # The key keeps its original position
    assert list(table) == ["10.0.0.0/24", "10.0.5.0/24"]
    assert "Duplicate subnet" in caplog.text


def test_table_is_read_only_mapping():
    table = build_subnet_table([SubnetEntry("10.0.0.0/8", "Core", location="HQ")])
    assert "10.0.0.0/8" in table
    assert table.site_names() == {"Core"}
    with pytest.raises(TypeError):
        table["10.1.0.0/16"] = table["10.0.0.0/8"]


def test_assign_subnets_to_sites():
    table = build_subnet_table([
        SubnetEntry("10.0.0.0/24", "nyc"),
        SubnetEntry("10.0.1.0/24", "NYC"),
        SubnetEntry("10.9.0.0/24", "Orphan"),
    ])
    sites = assign_subnets_to_sites([Site("NYC", location="New York"), Site("LON")], table)

    assert sites["NYC"].subnets == {"10.0.0.0/24", "10.0.1.0/24"}
    assert sites["LON"].subnets == set()
    assert sites["Orphan"].subnets == {"10.9.0.0/24"}


def test_assign_does_not_mutate_input_sites():
    original = Site("NYC")
    table = build_subnet_table([SubnetEntry("10.0.0.0/24", "NYC")])
    assign_subnets_to_sites([original], table)
    assert original.subnets == set()
