"""Exception types shared across the pipeline, collaborators, and traders."""


class UpdownError(Exception):
    """Base class for all project errors."""


class DataUnavailable(UpdownError):
    """An external fetch failed or returned nothing usable."""


class ConfigInvalid(UpdownError):
    """A reconfiguration request carried a malformed or out-of-range field."""


class PersistenceFailure(UpdownError):
    """The state store could not be read or written."""


class InvariantViolation(UpdownError):
    """A bookkeeping invariant broke. This is a defect, never a runtime condition."""


class NotReadyError(UpdownError):
    """No complete snapshot has been published yet."""
