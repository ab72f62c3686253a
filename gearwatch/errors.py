class GearwatchError(Exception):
    """Base class for errors raised by a derivation pass."""


class SnapshotFetchFailure(GearwatchError):
    """The snapshot provider could not be reached or answered with an error."""


class MalformedSnapshot(GearwatchError, ValueError):
    """The provider returned data that does not fit the data model."""


class DerivationInternalError(GearwatchError):
    """A rule computation hit a state it should never see (e.g. clock skew)."""
