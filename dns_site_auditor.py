#!/usr/bin/env python3
"""
AD DNS Site Auditor

Finds DNS records that point at an address in a different Active Directory
site than the domain controller serving them. Sites, subnets and DCs come from
AD (or an inventory file); every static A record on every DC is classified
against the site/subnet topology and the mismatches are exported as CSV, JSON
and HTML reports.

Configuration Priority: CLI > config file > defaults
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from audit_errors import ConfigurationError, SetupError, SiteAuditError
from directory_service import (DirectoryService, DomainController, InventoryDirectoryService,
                               LdapDirectoryService, AUTH_METHODS, load_inventory)
from reachability import PingProbe, ReachabilityProbe, StaticProbe, TcpProbe
from record_sources import (InventoryRecordSource, LdapDnsRecordSource, RecordSource,
                            ZoneTransferRecordSource)
from report_generator import REPORT_FORMATS, TOOL_VERSION, ReportGenerator, generate_text_summary
from site_audit import DEFAULT_DC_TIMEOUT, DEFAULT_MAX_WORKERS, AuditConfig, AuditResult, run_audit
from site_classifier import FIRST_MATCH, MATCH_STRATEGIES
from subnet_table import assign_subnets_to_sites, build_subnet_table

SOURCES = ['ldap', 'axfr', 'inventory']
PROBES = ['ping', 'tcp', 'static', 'none']
PASSWORD_ENV_VAR = 'DNS_AUDIT_PASSWORD'

DEFAULT_SETTINGS = {
    'source': None,
    'inventory': None,
    'server': None,
    'username': None,
    'password': None,
    'auth': 'ntlm',
    'use_ssl': False,
    'zones': [],
    'include_dynamic': False,
    'include_unknown_subnets': False,
    'export_path': '.',
    'probe': None,
    'max_workers': DEFAULT_MAX_WORKERS,
    'dc_timeout': DEFAULT_DC_TIMEOUT,
    'match_strategy': FIRST_MATCH,
    'formats': list(REPORT_FORMATS),
    'verbose': False,
}


def setup_logging(verbose: bool = False, log_file: str = None) -> logging.Logger:
    """Setup logging configuration"""
    logger = logging.getLogger('dns_site_auditor')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Clear any existing handlers
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (only in verbose mode)
    if verbose:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class UserOutput:
    """Handle user-facing output separate from logging"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def info(self, message: str):
        print(message)

    def success(self, message: str):
        print(message)

    def warning(self, message: str):
        print(f"WARNING: {message}")

    def error(self, message: str):
        print(f"ERROR: {message}", file=sys.stderr)

    def verbose_info(self, message: str):
        if self.verbose:
            print(f"[VERBOSE] {message}")

    def notice(self, message: str):
        print(f"NOTICE: {message}")


def load_config(config_file: str) -> Dict[str, Any]:
    """Load configuration from a JSON or YAML file"""
    path = Path(config_file)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == '.json':
                config = json.load(f)
            else:
                config = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config file {config_file}: {e}") from e

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a mapping")
    return config


def parse_formats(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(',')
    formats = [str(fmt).strip().lower() for fmt in value or [] if str(fmt).strip()]
    invalid = [fmt for fmt in formats if fmt not in REPORT_FORMATS]
    if invalid:
        raise ConfigurationError(f"Unknown report format(s): {', '.join(invalid)}")
    return formats


def merge_settings(args: argparse.Namespace, file_config: Dict[str, Any]) -> Dict[str, Any]:
    """Combine defaults, config file and command line (later wins)"""
    logger = logging.getLogger('dns_site_auditor')
    settings = dict(DEFAULT_SETTINGS)

    for key, value in file_config.items():
        key = key.replace('-', '_')
        if key not in settings:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        settings[key] = value

    cli_values = {
        'source': args.source,
        'inventory': args.inventory,
        'server': args.server,
        'username': args.username,
        'password': args.password,
        'auth': args.auth,
        'use_ssl': args.use_ssl,
        'zones': args.zone,
        'include_dynamic': args.include_dynamic,
        'include_unknown_subnets': args.include_unknown_subnets,
        'export_path': args.export_path,
        'probe': args.probe,
        'max_workers': args.max_workers,
        'dc_timeout': args.dc_timeout,
        'match_strategy': args.match_strategy,
        'formats': args.format,
        'verbose': args.verbose,
    }
    for key, value in cli_values.items():
        if value is not None:
            settings[key] = value

    if not settings['password']:
        settings['password'] = os.environ.get(PASSWORD_ENV_VAR)
    if not settings['source']:
        settings['source'] = 'inventory' if settings['inventory'] else 'ldap'
    if not settings['probe']:
        settings['probe'] = 'static' if settings['source'] == 'inventory' else 'ping'
    if isinstance(settings['zones'], str):
        settings['zones'] = [settings['zones']]
    settings['formats'] = parse_formats(settings['formats'])

    validate_settings(settings)
    return settings


def validate_settings(settings: Dict[str, Any]):
    if settings['source'] not in SOURCES:
        raise ConfigurationError(f"Unknown record source: {settings['source']}")
    if settings['probe'] not in PROBES:
        raise ConfigurationError(f"Unknown reachability probe: {settings['probe']}")
    if settings['match_strategy'] not in MATCH_STRATEGIES:
        raise ConfigurationError(f"Unknown match strategy: {settings['match_strategy']}")
    if str(settings['auth']).lower() not in AUTH_METHODS:
        raise ConfigurationError(f"Unknown LDAP authentication method: {settings['auth']}")
    if int(settings['max_workers']) < 1:
        raise ConfigurationError("max_workers must be at least 1")
    if int(settings['dc_timeout']) < 0:
        raise ConfigurationError("dc_timeout cannot be negative")
    if settings['source'] == 'inventory' and not settings['inventory']:
        raise ConfigurationError("The inventory source needs --inventory")
    if not settings['inventory'] and not settings['server']:
        raise ConfigurationError("Specify a directory server with --server (or use --inventory)")
    if settings['source'] == 'ldap' and not settings['server']:
        raise ConfigurationError("The ldap record source needs --server")
    if settings['source'] == 'axfr' and not settings['zones']:
        raise ConfigurationError("The axfr record source needs at least one --zone")


def make_audit_config(settings: Dict[str, Any]) -> AuditConfig:
    return AuditConfig(
        zones=tuple(settings['zones']),
        include_dynamic=bool(settings['include_dynamic']),
        include_unknown_subnets=bool(settings['include_unknown_subnets']),
        match_strategy=settings['match_strategy'],
        max_workers=int(settings['max_workers']),
        dc_timeout=int(settings['dc_timeout']),
        export_path=str(settings['export_path']),
        formats=tuple(settings['formats']),
    )


def unreachable_hosts(inventory: Dict[str, Any], dcs: List[DomainController]) -> List[str]:
    """Addresses of the DCs an inventory marks unreachable (by name or address)"""
    listed = {str(item).lower() for item in inventory.get('unreachable') or []}
    hosts = set(listed)
    for dc in dcs:
        if {dc.name.lower(), dc.ipv4.lower(), dc.hostname.lower()} & listed:
            hosts.add(dc.address.lower())
    return sorted(hosts)


class AuditRunner:
    """Wires the directory, record source and probe together for one run"""

    def __init__(self, settings: Dict[str, Any], user_output: UserOutput, logger: logging.Logger):
        self.settings = settings
        self.user_output = user_output
        self.logger = logger
        self.inventory: Optional[Dict[str, Any]] = None
        self.ldap: Optional[LdapDirectoryService] = None

    def _ldap(self) -> LdapDirectoryService:
        if self.ldap is None:
            self.ldap = LdapDirectoryService(
                server=self.settings['server'],
                username=self.settings['username'],
                password=self.settings['password'],
                auth_method=str(self.settings['auth']).lower(),
                use_ssl=bool(self.settings['use_ssl']),
            )
        return self.ldap

    def build_directory(self) -> DirectoryService:
        if self.settings['inventory']:
            self.inventory = load_inventory(self.settings['inventory'])
            self.logger.info(f"Using inventory file {self.settings['inventory']}")
            return InventoryDirectoryService(self.inventory)
        return self._ldap()

    def build_source(self) -> RecordSource:
        source = self.settings['source']
        if source == 'inventory':
            return InventoryRecordSource(self.inventory or {})
        if source == 'axfr':
            return ZoneTransferRecordSource(self.settings['zones'])
        return LdapDnsRecordSource(self._ldap())

    def build_probe(self, dcs: List[DomainController]) -> Optional[ReachabilityProbe]:
        probe = self.settings['probe']
        if probe == 'ping':
            return PingProbe()
        if probe == 'tcp':
            return TcpProbe()
        if probe == 'static':
            return StaticProbe(unreachable_hosts(self.inventory or {}, dcs))
        return None

    def run(self) -> AuditResult:
        directory = self.build_directory()
        source = None
        try:
            self.user_output.info("Loading AD sites and subnets...")
            sites = directory.list_sites()
            if not sites:
                raise SetupError("No AD sites were found")

            table = build_subnet_table(directory.list_subnets())
            sites_by_name = assign_subnets_to_sites(sites, table)
            self.user_output.info(f"Found {len(sites_by_name)} sites and {len(table)} subnets")
            if table.skipped:
                self.user_output.warning(f"{len(table.skipped)} subnets could not be parsed and were skipped")
                for skipped in table.skipped:
                    self.user_output.verbose_info(f"Skipped {skipped.cidr} ({skipped.site}): {skipped.reason}")
            listed = {site.name.lower() for site in sites}
            for site_name in sorted(name for name in table.site_names() if name.lower() not in listed):
                self.user_output.verbose_info(f"Subnets reference site '{site_name}' which is not in the site list")
            if not table:
                self.user_output.warning("No usable subnets; every address will be unmatched")

            dcs = directory.list_domain_controllers()
            if not dcs:
                raise SetupError("No domain controllers were found")
            self.user_output.info(f"Found {len(dcs)} domain controllers")

            config = make_audit_config(self.settings)
            source = self.build_source()
            probe = self.build_probe(dcs)

            self.user_output.info("Auditing DNS records...")
            return run_audit(dcs, table, source, probe, config)
        finally:
            if source is not None:
                source.close()
            directory.close()


def main():
    """Main function"""
    parser = argparse.ArgumentParser(
        description="Audit AD-integrated DNS for records that point outside their DC's site",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Audit every forward zone, static records only
  python dns_site_auditor.py --server dc01.corp.example.com --username 'CORP\\auditor'

  # Restrict to two zones and include dynamically registered records
  python dns_site_auditor.py --server dc01.corp.example.com --zone corp.example.com --zone lab.example.com --include-dynamic

  # Report addresses that are in no AD subnet as well
  python dns_site_auditor.py --config audit.yaml --include-unknown-subnets --export-path ./reports

  # Offline audit from an inventory file
  python dns_site_auditor.py --inventory inventory.yaml --format csv,json

Configuration file format (YAML or JSON):
  server: dc01.corp.example.com
  username: CORP\\auditor
  zones: [corp.example.com]
  include_dynamic: false
  include_unknown_subnets: false
  export_path: ./reports
  max_workers: 50
  dc_timeout: 300
  match_strategy: first
        """
    )

    scope = parser.add_argument_group('Audit scope')
    scope.add_argument("--zone", action="append",
                       help="Zone to audit (repeatable; default: all forward zones)")
    scope.add_argument("--include-dynamic", action="store_true", default=None,
                       help="Also audit dynamic records (TTL > 0)")
    scope.add_argument("--include-unknown-subnets", action="store_true", default=None,
                       help="Report addresses that fall in no AD subnet")
    scope.add_argument("--match-strategy", choices=list(MATCH_STRATEGIES),
                       help="Subnet match rule: first (table order) or longest (most specific) (default: first)")

    connection = parser.add_argument_group('Directory and DNS sources')
    connection.add_argument("-c", "--config", help="Configuration file (YAML or JSON)")
    connection.add_argument("--source", choices=SOURCES,
                            help="Where DNS records come from (default: ldap, or inventory with --inventory)")
    connection.add_argument("--inventory", help="Inventory file with sites, subnets, DCs and zones")
    connection.add_argument("-s", "--server", help="Domain controller to query for AD topology")
    connection.add_argument("-u", "--username", help="Bind user (DOMAIN\\user or user@domain)")
    connection.add_argument("-p", "--password",
                            help=f"Bind password (or set {PASSWORD_ENV_VAR})")
    connection.add_argument("--auth", choices=sorted(AUTH_METHODS), help="LDAP authentication (default: ntlm)")
    connection.add_argument("--use-ssl", action="store_true", default=None, help="Use LDAPS (port 636)")

    execution = parser.add_argument_group('Execution')
    execution.add_argument("--probe", choices=PROBES,
                           help="Reachability check before each DC (default: ping, static with --inventory)")
    execution.add_argument("--max-workers", type=int,
                           help=f"DCs processed in parallel (default: {DEFAULT_MAX_WORKERS})")
    execution.add_argument("--dc-timeout", type=int,
                           help=f"Seconds allowed per DC, 0 to disable (default: {DEFAULT_DC_TIMEOUT})")

    output = parser.add_argument_group('Output')
    output.add_argument("-o", "--export-path", help="Directory for reports (default: current directory)")
    output.add_argument("-f", "--format", help="Report formats: csv,json,html (comma-separated; default: all)")
    output.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable verbose output")
    output.add_argument("--log-file", help="Save detailed logs to file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {TOOL_VERSION}")

    args = parser.parse_args()
    user_output = UserOutput(bool(args.verbose))

    try:
        file_config = load_config(args.config) if args.config else {}
        settings = merge_settings(args, file_config)

        logger = setup_logging(settings['verbose'], args.log_file)
        user_output = UserOutput(settings['verbose'])
        logger.info("DNS site audit started")
        logger.debug(f"Source: {settings['source']}, probe: {settings['probe']}, "
                     f"zones: {settings['zones'] or 'all'}")

        result = AuditRunner(settings, user_output, logger).run()

        reporter = ReportGenerator(settings['export_path'])
        report_files = reporter.write_reports(result, make_audit_config(settings))

        user_output.info("\n" + generate_text_summary(result))
        if report_files:
            user_output.info("\nReports written:")
            for report_file in report_files:
                user_output.info(f"  {report_file}")

        if result.failed_dcs:
            user_output.warning(f"{len(result.failed_dcs)} domain controllers could not be processed")
        if result.mismatches:
            user_output.notice(f"{len(result.mismatches)} DNS records point outside their DC's site")
        else:
            user_output.success("No site mismatches found")

        logger.info("DNS site audit completed")
        sys.exit(0)

    except KeyboardInterrupt:
        user_output.info("\nAudit cancelled by user")
        sys.exit(1)
    except SiteAuditError as e:
        logging.getLogger('dns_site_auditor').error(f"Audit setup failed: {e}")
        user_output.error(str(e))
        sys.exit(1)
    except Exception as e:
        logging.getLogger('dns_site_auditor').error(f"Unexpected error: {e}", exc_info=True)
        user_output.error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
