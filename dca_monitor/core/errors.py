"""Failure taxonomy shared by the upstream clients and the monitor loop."""


class MonitorError(Exception):
    """Base class for every recoverable failure raised by this package."""


class UpstreamUnavailable(MonitorError):
    """Network failure, timeout or non-2xx response from an upstream service."""


class UnknownInstrument(MonitorError):
    """The market-data provider does not recognise the instrument identifier."""

    def __init__(self, instrument_id: str) -> None:
        super().__init__(f"unknown instrument: {instrument_id}")
        self.instrument_id = instrument_id


class ClassificationUnavailable(UpstreamUnavailable):
    """The classification provider could not be reached or returned an error status."""


class MalformedResponse(MonitorError):
    """The classifier answered, but not with a well-formed verdict."""


class StoreReadFailed(UpstreamUnavailable):
    """The datastore could not be read."""


class StoreWriteFailed(MonitorError):
    """A best-effort datastore write did not succeed."""


class DispatchFailed(MonitorError):
    """A best-effort chat alert was not delivered."""
