"""
Exception hierarchy for the probe.

Expected failures (rejected writes, dropped connections, exhausted
retries) never raise: they are recorded on the RunSignal. Exceptions are
reserved for broken configuration and broken collaborator contracts.
"""


class ProbeError(Exception):
    """Base class for all errors raised by the probe."""


class ConfigError(ProbeError):
    """The configuration file could not be read or holds invalid values."""


class ContractViolationError(ProbeError):
    """A collaborator delivered an event that breaks its documented contract."""
