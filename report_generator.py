"""
Report Generator

Writes the audit results under the export directory, every file stamped with
the run timestamp:

- DNS_Site_Mismatches_<ts>.csv     one row per mismatched record
- DC_Processing_Summary_<ts>.csv   status and timing per DC
- Site_Mismatch_Summary_<ts>.csv   mismatch count per classified site
- DNS_Site_Audit_<ts>.json         everything above plus run metadata
- DNS_Site_Audit_<ts>.html         stakeholder-friendly view
"""

import csv
import html
import json
import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Sequence

from tabulate import tabulate

from mismatch_detector import MismatchRecord
from site_audit import AuditConfig, AuditResult

TOOL_VERSION = "1.0.0"
REPORT_FORMATS = ['csv', 'json', 'html']
FILE_TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'

MISMATCH_COLUMNS = [
    ('DCName', 'dc_name'),
    ('DCSite', 'dc_site'),
    ('DCIP', 'dc_ip'),
    ('ZoneName', 'zone_name'),
    ('RecordName', 'record_name'),
    ('FQDN', 'fqdn'),
    ('RecordType', 'record_type'),
    ('IPAddress', 'ip_address'),
    ('IPSite', 'ip_site'),
    ('IPSubnet', 'ip_subnet'),
    ('IPLocation', 'ip_location'),
    ('MismatchType', 'mismatch_type'),
    ('TTL', 'ttl'),
    ('IsStatic', 'is_static'),
    ('Timestamp', 'timestamp'),
]

DC_COLUMNS = ['DCName', 'Site', 'IPAddress', 'Status', 'MismatchCount',
              'ProcessingTimeSeconds', 'ZonesProcessed', 'ZonesFailed']
SITE_COLUMNS = ['Site', 'MismatchCount']


def mismatch_row(record: MismatchRecord) -> List[Any]:
    row = []
    for _, attr in MISMATCH_COLUMNS:
        value = getattr(record, attr)
        row.append(value.value if attr == 'mismatch_type' else value)
    return row


def build_report_data(result: AuditResult, config: AuditConfig) -> Dict[str, Any]:
    """Structured form of an audit result, shared by the JSON and HTML reports"""
    mismatches = []
    for record in result.mismatches:
        item = asdict(record)
        item['mismatch_type'] = record.mismatch_type.value
        mismatches.append(item)

    return {
        'metadata': {
            'generated': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
            'tool_version': TOOL_VERSION,
            'start_time': result.start_time.strftime('%Y-%m-%d %H:%M:%S') if result.start_time else None,
            'end_time': result.end_time.strftime('%Y-%m-%d %H:%M:%S') if result.end_time else None,
            'duration_seconds': round(result.duration_seconds, 2),
            'zones': list(config.zones),
            'include_dynamic': config.include_dynamic,
            'include_unknown_subnets': config.include_unknown_subnets,
            'match_strategy': config.match_strategy,
        },
        'summary': {
            'total_mismatches': len(result.mismatches),
            'dcs_processed': len(result.dc_results),
            'dcs_failed': len(result.failed_dcs),
            'subnets_skipped': len(result.skipped_subnets),
        },
        'site_summary': [{'site': site, 'mismatch_count': count} for site, count in result.site_summary],
        'dc_summary': [{'dc_name': dc, 'mismatch_count': count} for dc, count in result.dc_summary],
        'dc_results': [asdict(dc_result) for dc_result in result.dc_results],
        'skipped_subnets': [asdict(skipped) for skipped in result.skipped_subnets],
        'mismatches': mismatches,
    }


def generate_text_summary(result: AuditResult, top: int = 10) -> str:
    """Console summary tables"""
    lines = []
    lines.append("DNS Site Mismatch Audit")
    lines.append("=" * 50)
    lines.append(f"Domain controllers processed: {len(result.dc_results)} "
                 f"({len(result.failed_dcs)} failed)")
    lines.append(f"Site mismatches found: {len(result.mismatches)}")
    if result.skipped_subnets:
        lines.append(f"Subnets skipped (unparseable): {len(result.skipped_subnets)}")
    lines.append("")

    dc_rows = [[r.dc_name, r.dc_site, r.dc_ip, r.status, r.mismatch_count, f"{r.duration_seconds:.2f}"]
               for r in result.dc_results]
    lines.append(tabulate(dc_rows, headers=['DC', 'Site', 'IP', 'Status', 'Mismatches', 'Seconds'],
                          tablefmt="github"))

    if result.site_summary:
        lines.append("")
        lines.append("Mismatches by site:")
        lines.append(tabulate(result.site_summary[:top], headers=['Site', 'Mismatches'], tablefmt="github"))

    return "\n".join(lines)


class ReportGenerator:
    """Writes audit reports under an export directory"""

    def __init__(self, export_path: str = ".", timestamp: str = None, logger: logging.Logger = None):
        self.export_path = export_path
        self.timestamp = timestamp or datetime.now().strftime(FILE_TIMESTAMP_FORMAT)
        self.logger = logger or logging.getLogger('dns_site_auditor.reports')

    def _path(self, prefix: str, extension: str) -> str:
        return os.path.join(self.export_path, f"{prefix}_{self.timestamp}.{extension}")

    def write_reports(self, result: AuditResult, config: AuditConfig,
                      formats: Sequence[str] = None) -> List[str]:
        """Write every requested report and return the file paths"""
        formats = [fmt.lower() for fmt in (formats or config.formats)]
        os.makedirs(self.export_path, exist_ok=True)

        files = []
        if 'csv' in formats:
            files.append(self.write_mismatch_csv(result.mismatches))
            files.append(self.write_dc_summary_csv(result))
            files.append(self.write_site_summary_csv(result))

        if 'json' in formats or 'html' in formats:
            report_data = build_report_data(result, config)
            if 'json' in formats:
                files.append(self.write_json_report(report_data))
            if 'html' in formats:
                files.append(self.write_html_report(report_data))

        return files

    def write_mismatch_csv(self, mismatches: Sequence[MismatchRecord]) -> str:
        output_file = self._path("DNS_Site_Mismatches", "csv")
        with open(output_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow([header for header, _ in MISMATCH_COLUMNS])
            for record in mismatches:
                writer.writerow(mismatch_row(record))
        self.logger.info(f"Mismatch report written: {output_file}")
        return output_file

    def write_dc_summary_csv(self, result: AuditResult) -> str:
        output_file = self._path("DC_Processing_Summary", "csv")
        with open(output_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(DC_COLUMNS)
            for r in result.dc_results:
                writer.writerow([r.dc_name, r.dc_site, r.dc_ip, r.status, r.mismatch_count,
                                 r.duration_seconds, r.zones_processed, r.zones_failed])
        self.logger.info(f"DC processing summary written: {output_file}")
        return output_file

    def write_site_summary_csv(self, result: AuditResult) -> str:
        output_file = self._path("Site_Mismatch_Summary", "csv")
        with open(output_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(SITE_COLUMNS)
            for site, count in result.site_summary:
                writer.writerow([site, count])
        self.logger.info(f"Site mismatch summary written: {output_file}")
        return output_file

    def write_json_report(self, report_data: Dict[str, Any]) -> str:
        output_file = self._path("DNS_Site_Audit", "json")
        with open(output_file, 'w', encoding='utf-8') as f:
            json.dump(report_data, f, indent=2, default=str)
        self.logger.info(f"JSON report written: {output_file}")
        return output_file

    def write_html_report(self, report_data: Dict[str, Any]) -> str:
        output_file = self._path("DNS_Site_Audit", "html")
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(render_html(report_data))
        self.logger.info(f"HTML report written: {output_file}")
        return output_file


def _cell(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def render_html(report_data: Dict[str, Any]) -> str:
    metadata = report_data['metadata']
    summary = report_data['summary']
    status_class = "status-pass" if summary['total_mismatches'] == 0 else "status-fail"
    status_text = "No mismatches" if summary['total_mismatches'] == 0 else f"{summary['total_mismatches']} mismatches"

    html_content = f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>DNS Site Mismatch Audit</title>
    <style>
        body {{
            font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
            line-height: 1.6;
            margin: 0;
            padding: 20px;
            background-color: #f5f5f5;
        }}
        .container {{
            max-width: 1400px;
            margin: 0 auto;
            background-color: white;
            padding: 30px;
            border-radius: 10px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }}
        h1 {{
            color: #2c3e50;
            text-align: center;
            border-bottom: 3px solid #3498db;
            padding-bottom: 10px;
        }}
        h2 {{
            color: #34495e;
            border-left: 4px solid #3498db;
            padding-left: 15px;
            margin-top: 30px;
        }}
        .status-badge {{
            display: inline-block;
            padding: 5px 15px;
            border-radius: 20px;
            color: white;
            font-weight: bold;
            text-transform: uppercase;
            font-size: 0.9em;
        }}
        .status-pass {{ background-color: #27ae60; }}
        .status-fail {{ background-color: #e74c3c; }}
        .info-grid {{
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(250px, 1fr));
            gap: 20px;
            margin: 20px 0;
        }}
        .info-card {{
            background-color: #ecf0f1;
            padding: 15px;
            border-radius: 8px;
            border-left: 4px solid #3498db;
        }}
        table {{
            width: 100%;
            border-collapse: collapse;
            margin: 20px 0;
            background-color: white;
            font-size: 0.9em;
        }}
        th, td {{
            text-align: left;
            padding: 8px;
            border-bottom: 1px solid #ddd;
        }}
        th {{
            background-color: #34495e;
            color: white;
        }}
        tr:nth-child(even) {{
            background-color: #f2f2f2;
        }}
        .failed {{ color: #e74c3c; font-weight: bold; }}
    </style>
</head>
<body>
<div class="container">
    <h1>DNS Site Mismatch Audit</h1>
    <p style="text-align: center;"><span class="status-badge {status_class}">{_cell(status_text)}</span></p>
    <div class="info-grid">
        <div class="info-card">
            <h3>Run</h3>
            <p><strong>Generated:</strong> {_cell(metadata['generated'])}</p>
            <p><strong>Duration:</strong> {_cell(metadata['duration_seconds'])}s</p>
            <p><strong>Match strategy:</strong> {_cell(metadata['match_strategy'])}</p>
        </div>
        <div class="info-card">
            <h3>Scope</h3>
            <p><strong>Zones:</strong> {_cell(', '.join(metadata['zones']) or 'All forward zones')}</p>
            <p><strong>Include dynamic:</strong> {_cell(metadata['include_dynamic'])}</p>
            <p><strong>Include unknown subnets:</strong> {_cell(metadata['include_unknown_subnets'])}</p>
        </div>
        <div class="info-card">
            <h3>Summary</h3>
            <p><strong>Mismatches:</strong> {summary['total_mismatches']}</p>
            <p><strong>DCs processed:</strong> {summary['dcs_processed']} ({summary['dcs_failed']} failed)</p>
            <p><strong>Subnets skipped:</strong> {summary['subnets_skipped']}</p>
        </div>
    </div>
'''

    html_content += '''
    <h2>Domain Controllers</h2>
    <table>
        <tr><th>DC</th><th>Site</th><th>IP</th><th>Status</th><th>Mismatches</th><th>Seconds</th></tr>
'''
    for dc in report_data['dc_results']:
        status_attr = ' class="failed"' if dc['status'] != "Completed" else ''
        html_content += f'''        <tr><td>{_cell(dc['dc_name'])}</td><td>{_cell(dc['dc_site'])}</td><td>{_cell(dc['dc_ip'])}</td><td{status_attr}>{_cell(dc['status'])}</td><td>{dc['mismatch_count']}</td><td>{dc['duration_seconds']}</td></tr>
'''
    html_content += '    </table>\n'

    if report_data['site_summary']:
        html_content += '''
    <h2>Mismatches by Site</h2>
    <table>
        <tr><th>Site</th><th>Mismatches</th></tr>
'''
        for item in report_data['site_summary']:
            html_content += f"        <tr><td>{_cell(item['site'])}</td><td>{item['mismatch_count']}</td></tr>\n"
        html_content += '    </table>\n'

    html_content += '\n    <h2>Mismatched Records</h2>\n'
    if report_data['mismatches']:
        html_content += '''    <table>
        <tr><th>DC</th><th>DC Site</th><th>FQDN</th><th>IP Address</th><th>IP Site</th><th>Subnet</th><th>Type</th><th>TTL</th></tr>
'''
        for m in report_data['mismatches']:
            html_content += (f"        <tr><td>{_cell(m['dc_name'])}</td><td>{_cell(m['dc_site'])}</td>"
                             f"<td>{_cell(m['fqdn'])}</td><td>{_cell(m['ip_address'])}</td>"
                             f"<td>{_cell(m['ip_site'])}</td><td>{_cell(m['ip_subnet'])}</td>"
                             f"<td>{_cell(m['mismatch_type'])}</td><td>{m['ttl']}</td></tr>\n")
        html_content += '    </table>\n'
    else:
        html_content += '    <p style="color: #27ae60; font-weight: bold;">No site mismatches found</p>\n'

    if report_data['skipped_subnets']:
        html_content += '''
    <h2>Skipped Subnets</h2>
    <table>
        <tr><th>Subnet</th><th>Site</th><th>Reason</th></tr>
'''
        for s in report_data['skipped_subnets']:
            html_content += f"        <tr><td>{_cell(s['cidr'])}</td><td>{_cell(s['site'])}</td><td>{_cell(s['reason'])}</td></tr>\n"
        html_content += '    </table>\n'

    html_content += '''</div>
</body>
</html>'''
    return html_content
