"""
Reachability Probes

Cheap up/down checks run before a DC's zones are enumerated, so an offline DC
fails fast instead of waiting out LDAP or zone transfer timeouts.
"""

import logging
import socket
import subprocess
import sys
from typing import Iterable

DEFAULT_PROBE_TIMEOUT = 2
DNS_PORT = 53


class ReachabilityProbe:
    """Interface: is_reachable(host) -> bool"""

    def is_reachable(self, host: str) -> bool:
        raise NotImplementedError


class PingProbe(ReachabilityProbe):
    """Single ICMP echo request through the system ping command"""

    def __init__(self, timeout: int = DEFAULT_PROBE_TIMEOUT, logger: logging.Logger = None):
        self.timeout = timeout
        self.logger = logger or logging.getLogger('dns_site_auditor.audit')

    def command(self, host: str):
        if sys.platform.startswith('win'):
            return ['ping', '-n', '1', '-w', str(self.timeout * 1000), host]
        return ['ping', '-c', '1', '-W', str(self.timeout), host]

    def is_reachable(self, host: str) -> bool:
        if not host:
            return False
        try:
            result = subprocess.run(
                self.command(host),
                capture_output=True,
                text=True,
                timeout=self.timeout + 2
            )
        except subprocess.TimeoutExpired:
            self.logger.debug(f"Ping to {host} timed out")
            return False
        except FileNotFoundError:
            self.logger.warning("ping command not available; treating hosts as reachable")
            return True

        return result.returncode == 0


class TcpProbe(ReachabilityProbe):
    """TCP connect to a service port (DNS by default)"""

    def __init__(self, port: int = DNS_PORT, timeout: int = DEFAULT_PROBE_TIMEOUT,
                 logger: logging.Logger = None):
        self.port = port
        self.timeout = timeout
        self.logger = logger or logging.getLogger('dns_site_auditor.audit')

    def is_reachable(self, host: str) -> bool:
        if not host:
            return False
        try:
            with socket.create_connection((host, self.port), timeout=self.timeout):
                return True
        except OSError as e:
            self.logger.debug(f"TCP connect to {host}:{self.port} failed: {e}")
            return False


class StaticProbe(ReachabilityProbe):
    """Every host is reachable except the ones listed"""

    def __init__(self, unreachable: Iterable[str] = ()):
        self.unreachable = {host.lower() for host in unreachable}

    def is_reachable(self, host: str) -> bool:
        return bool(host) and host.lower() not in self.unreachable
