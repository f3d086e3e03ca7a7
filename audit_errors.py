"""Exception types raised by the DNS site auditor"""


class SiteAuditError(Exception):
    """Base class for auditor errors"""


class SetupError(SiteAuditError):
    """The audit cannot start (no directory, no sites, no domain controllers)"""


class ConfigurationError(SetupError):
    """Invalid or incomplete configuration"""


class DirectoryServiceError(SetupError):
    """The directory service could not be queried"""


class RecordSourceError(SiteAuditError):
    """Zones or records could not be read from a DNS server"""


class DCTimeoutError(SiteAuditError):
    """Processing a domain controller ran past its deadline"""


class SubnetParseError(SiteAuditError, ValueError):
    """A subnet CIDR string could not be parsed"""


class InvalidAddressError(SubnetParseError):
    """The network part is not a dotted-quad IPv4 address"""


class InvalidPrefixError(SubnetParseError):
    """The prefix length is not an integer between 0 and 32"""
