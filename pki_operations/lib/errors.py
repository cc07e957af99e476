"""Fatal error types for PKI operations.

Every error ends the run; ``main()`` catches ``PKIError`` once and exits 1.
"""


class PKIError(Exception):
    """Base class for all fatal orchestration errors."""


class ConfigurationError(PKIError):
    """A required input directory, parameter file or parameter is missing."""


class PreconditionError(PKIError):
    """An artifact was requested before the artifacts it depends on exist."""


class ExecutionError(PKIError):
    """An external command, copy or directory creation failed."""
