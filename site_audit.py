"""
Site Audit Orchestrator

Runs the mismatch detector against every domain controller, records how each
DC fared, and builds the per-site and per-DC summaries used by the reports.
"""

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Mapping, Sequence, Tuple

from audit_errors import DCTimeoutError, SiteAuditError
from directory_service import DomainController
from mismatch_detector import (DetectorOptions, MismatchRecord, MismatchType,
                               collect_dc_mismatches)
from reachability import ReachabilityProbe
from record_sources import RecordSource
from site_classifier import FIRST_MATCH
from subnet_table import SkippedSubnet, Subnet

DEFAULT_MAX_WORKERS = 50
DEFAULT_DC_TIMEOUT = 300
STATUS_COMPLETED = "Completed"


@dataclass(frozen=True)
class AuditConfig:
    """Settings for one audit run, passed by value down to the detector"""
    zones: Tuple[str, ...] = ()
    include_dynamic: bool = False
    include_unknown_subnets: bool = False
    match_strategy: str = FIRST_MATCH
    max_workers: int = DEFAULT_MAX_WORKERS
    dc_timeout: int = DEFAULT_DC_TIMEOUT
    export_path: str = "."
    formats: Tuple[str, ...] = ("csv", "json", "html")

    def detector_options(self) -> DetectorOptions:
        return DetectorOptions(
            include_dynamic=self.include_dynamic,
            include_unknown_subnets=self.include_unknown_subnets,
            match_strategy=self.match_strategy,
        )


@dataclass
class DCProcessingResult:
    """Outcome of processing one DC"""
    dc_name: str
    dc_site: str
    dc_ip: str
    status: str
    mismatch_count: int = 0
    duration_seconds: float = 0.0
    zones_processed: int = 0
    zones_failed: int = 0

    @property
    def failed(self) -> bool:
        return self.status != STATUS_COMPLETED


@dataclass
class AuditResult:
    """Everything produced by an audit run"""
    mismatches: List[MismatchRecord] = field(default_factory=list)
    dc_results: List[DCProcessingResult] = field(default_factory=list)
    site_summary: List[Tuple[str, int]] = field(default_factory=list)
    dc_summary: List[Tuple[str, int]] = field(default_factory=list)
    skipped_subnets: List[SkippedSubnet] = field(default_factory=list)
    start_time: datetime = None
    end_time: datetime = None

    @property
    def failed_dcs(self) -> List[DCProcessingResult]:
        return [result for result in self.dc_results if result.failed]

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


def summarize(keys: Sequence[str]) -> List[Tuple[str, int]]:
    """Count occurrences, sorted by count descending then name"""
    return sorted(Counter(keys).items(), key=lambda item: (-item[1], item[0]))


def summarize_by_site(mismatches: Sequence[MismatchRecord]) -> List[Tuple[str, int]]:
    return summarize([record.ip_site for record in mismatches])


def summarize_by_dc(mismatches: Sequence[MismatchRecord]) -> List[Tuple[str, int]]:
    return summarize([record.dc_name for record in mismatches])


def filter_unknown_subnets(mismatches: Sequence[MismatchRecord],
                           include_unknown_subnets: bool) -> List[MismatchRecord]:
    if include_unknown_subnets:
        return list(mismatches)
    return [record for record in mismatches
            if record.mismatch_type != MismatchType.UNMATCHED_SUBNET]


class SiteAuditor:
    """Fans the mismatch detector out across domain controllers"""

    def __init__(self, config: AuditConfig, table: Mapping[str, Subnet],
                 source: RecordSource, probe: ReachabilityProbe = None,
                 logger: logging.Logger = None):
        self.config = config
        self.table = table
        self.source = source
        self.probe = probe
        self.logger = logger or logging.getLogger('dns_site_auditor.audit')
        self.options = config.detector_options()

    def audit(self, dcs: Sequence[DomainController]) -> AuditResult:
        result = AuditResult(start_time=datetime.now(),
                             skipped_subnets=list(getattr(self.table, 'skipped', [])))
        collected: List[MismatchRecord] = []
        max_workers = max(1, self.config.max_workers)

        self.logger.info(f"Auditing {len(dcs)} domain controllers against {len(self.table)} subnets")

        if max_workers > 1 and len(dcs) > 1:
            self.logger.debug(f"Using {min(max_workers, len(dcs))} workers")
            with ThreadPoolExecutor(max_workers=min(max_workers, len(dcs))) as executor:
                futures = [executor.submit(self._audit_dc, dc) for dc in dcs]

                # Fan-in happens on this thread only
                for future in as_completed(futures):
                    dc_result, records = future.result()
                    result.dc_results.append(dc_result)
                    collected.extend(records)
        else:
            for dc in dcs:
                dc_result, records = self._audit_dc(dc)
                result.dc_results.append(dc_result)
                collected.extend(records)

        result.mismatches = filter_unknown_subnets(collected, self.config.include_unknown_subnets)
        result.dc_results.sort(key=lambda r: r.dc_name.lower())
        result.site_summary = summarize_by_site(result.mismatches)
        result.dc_summary = summarize_by_dc(result.mismatches)
        result.end_time = datetime.now()

        self.logger.info(f"Audit complete: {len(result.mismatches)} mismatches, "
                         f"{len(result.failed_dcs)} of {len(dcs)} DCs failed")
        return result

    def _failed(self, dc: DomainController, reason: str, duration: float) -> DCProcessingResult:
        return DCProcessingResult(
            dc_name=dc.name,
            dc_site=dc.site,
            dc_ip=dc.ipv4,
            status=f"Failed: {reason}",
            duration_seconds=round(duration, 2),
        )

    def _audit_dc(self, dc: DomainController) -> Tuple[DCProcessingResult, List[MismatchRecord]]:
        """Run _process_dc, turning any unexpected error into a failed row for that DC"""
        started = time.monotonic()
        try:
            return self._process_dc(dc)
        except Exception as e:
            self.logger.error(f"{dc.name}: unexpected failure: {e}", exc_info=True)
            return self._failed(dc, str(e) or type(e).__name__, time.monotonic() - started), []

    def _process_dc(self, dc: DomainController) -> Tuple[DCProcessingResult, List[MismatchRecord]]:
        """Probe and audit one DC; never raises for DC-level failures"""
        started = time.monotonic()
        self.logger.info(f"Processing {dc.name} (site: {dc.site}, IP: {dc.ipv4 or 'unresolved'})")

        if self.probe is not None and not self.probe.is_reachable(dc.address):
            self.logger.warning(f"{dc.name} is not reachable")
            return self._failed(dc, "Unreachable", time.monotonic() - started), []

        deadline = started + self.config.dc_timeout if self.config.dc_timeout > 0 else None
        try:
            collection = collect_dc_mismatches(
                dc, self.source, self.table, self.options,
                zone_filter=self.config.zones, deadline=deadline,
            )
        except DCTimeoutError as e:
            self.logger.warning(f"{dc.name}: {e}")
            return self._failed(dc, f"Timed out after {self.config.dc_timeout}s",
                                time.monotonic() - started), []
        except SiteAuditError as e:
            self.logger.error(f"{dc.name}: {e}")
            return self._failed(dc, str(e), time.monotonic() - started), []

        elapsed = time.monotonic() - started
        self.logger.info(f"{dc.name}: {len(collection.records)} mismatches in "
                         f"{collection.zones_processed} zones ({elapsed:.2f}s)")
        dc_result = DCProcessingResult(
            dc_name=dc.name,
            dc_site=dc.site,
            dc_ip=dc.ipv4,
            status=STATUS_COMPLETED,
            mismatch_count=len(filter_unknown_subnets(collection.records,
                                                      self.config.include_unknown_subnets)),
            duration_seconds=round(elapsed, 2),
            zones_processed=collection.zones_processed,
            zones_failed=collection.zones_failed,
        )
        return dc_result, collection.records


def run_audit(dcs: Sequence[DomainController], table: Mapping[str, Subnet],
              source: RecordSource, probe: ReachabilityProbe = None,
              config: AuditConfig = None, logger: logging.Logger = None) -> AuditResult:
    """Audit every DC and return the aggregated result"""
    auditor = SiteAuditor(config or AuditConfig(), table, source, probe, logger)
    return auditor.audit(dcs)
