#!/usr/bin/env python3
"""
Tests for audit report output
"""

import csv
import json
import os
from datetime import datetime

import pytest

from mismatch_detector import MismatchRecord, MismatchType
from report_generator import (ReportGenerator, build_report_data, generate_text_summary,
                              render_html)
from site_audit import AuditConfig, AuditResult, DCProcessingResult
from subnet_table import SkippedSubnet

TIMESTAMP = "20250101_120000"


def mismatch(dc="DC1", fqdn="app.corp.com", address="10.0.1.5", ip_site="SiteB",
             mismatch_type=MismatchType.DIFFERENT_SITE):
    return MismatchRecord(
        dc_name=dc, dc_site="SiteA", dc_ip="10.0.0.10", zone_name="corp.com",
        record_name=fqdn.split('.')[0], fqdn=fqdn, record_type="A", ip_address=address,
        ip_site=ip_site, ip_subnet="10.0.1.0/24", ip_location="London",
        mismatch_type=mismatch_type, ttl=0, is_static=True, timestamp="2025-01-01 12:00:00",
    )


@pytest.fixture
def result():
    return AuditResult(
        mismatches=[mismatch(), mismatch(fqdn="<script>.corp.com", address="8.8.8.8", ip_site="Unknown",
                                         mismatch_type=MismatchType.UNMATCHED_SUBNET)],
        dc_results=[
            DCProcessingResult("DC1", "SiteA", "10.0.0.10", "Completed", 2, 1.25, 3, 0),
            DCProcessingResult("DC2", "SiteB", "10.0.1.10", "Failed: Unreachable", 0, 0.5),
        ],
        site_summary=[("SiteB", 1), ("Unknown", 1)],
        dc_summary=[("DC1", 2)],
        skipped_subnets=[SkippedSubnet("bad/99", "SiteX", "Prefix length 99 is outside 0-32")],
        start_time=datetime(2025, 1, 1, 12, 0, 0),
        end_time=datetime(2025, 1, 1, 12, 0, 5),
    )


def read_csv(path):
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.reader(f))


def test_write_all_reports(tmp_path, result):
    export_path = tmp_path / "reports"
    reporter = ReportGenerator(str(export_path), timestamp=TIMESTAMP)
    files = reporter.write_reports(result, AuditConfig(include_unknown_subnets=True))

    names = sorted(os.path.basename(f) for f in files)
    assert names == [
        f"DC_Processing_Summary_{TIMESTAMP}.csv",
        f"DNS_Site_Audit_{TIMESTAMP}.html",
        f"DNS_Site_Audit_{TIMESTAMP}.json",
        f"DNS_Site_Mismatches_{TIMESTAMP}.csv",
        f"Site_Mismatch_Summary_{TIMESTAMP}.csv",
    ]
    assert all(os.path.exists(f) for f in files)


def test_mismatch_csv(tmp_path, result):
    path = ReportGenerator(str(tmp_path), timestamp=TIMESTAMP).write_mismatch_csv(result.mismatches)
    rows = read_csv(path)

    assert rows[0][:3] == ['DCName', 'DCSite', 'DCIP']
    assert len(rows) == 3
    header = rows[0]
    first = dict(zip(header, rows[1]))
    assert first['FQDN'] == 'app.corp.com'
    assert first['IPSite'] == 'SiteB'
    assert first['MismatchType'] == 'DifferentSite'
    assert first['IsStatic'] == 'True'
    assert dict(zip(header, rows[2]))['MismatchType'] == 'UnmatchedSubnet'


def test_summary_csvs(tmp_path, result):
    reporter = ReportGenerator(str(tmp_path), timestamp=TIMESTAMP)

    dc_rows = read_csv(reporter.write_dc_summary_csv(result))
    assert dc_rows[0][:6] == ['DCName', 'Site', 'IPAddress', 'Status', 'MismatchCount', 'ProcessingTimeSeconds']
    assert dc_rows[2][3] == 'Failed: Unreachable'

    site_rows = read_csv(reporter.write_site_summary_csv(result))
    assert site_rows == [['Site', 'MismatchCount'], ['SiteB', '1'], ['Unknown', '1']]


def test_only_requested_formats(tmp_path, result):
    files = ReportGenerator(str(tmp_path), timestamp=TIMESTAMP).write_reports(result, AuditConfig(), ['json'])
    assert [os.path.basename(f) for f in files] == [f"DNS_Site_Audit_{TIMESTAMP}.json"]

    with open(files[0], encoding='utf-8') as f:
        data = json.load(f)
    assert data['summary'] == {'total_mismatches': 2, 'dcs_processed': 2, 'dcs_failed': 1, 'subnets_skipped': 1}
    assert data['mismatches'][0]['mismatch_type'] == 'DifferentSite'
    assert data['metadata']['duration_seconds'] == 5.0


def test_html_escapes_record_data(result):
    page = render_html(build_report_data(result, AuditConfig()))
    assert "&lt;script&gt;.corp.com" in page
    assert "<script>" not in page
    assert "Failed: Unreachable" in page
    assert "bad/99" in page


def test_text_summary(result):
    text = generate_text_summary(result)
    assert "Site mismatches found: 2" in text
    assert "(1 failed)" in text
    assert "| DC1" in text
    assert "SiteB" in text
