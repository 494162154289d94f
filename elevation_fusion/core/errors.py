"""Error taxonomy for the recording pipeline.

None of these are fatal to the process. Collaborators raise them;
sources and the session controller turn them into notifications.
"""


class FusionError(Exception):
    """Base exception for recording pipeline errors."""
    pass


class SourceUnavailable(FusionError):
    """Selected source cannot produce samples (e.g. wearable not connected)."""
    pass


class ConnectionFailed(FusionError):
    """A connect attempt to the wearable was rejected or timed out."""
    pass


class StreamError(FusionError):
    """A running source failed mid-stream."""
    pass


class PersistenceFailure(FusionError):
    """A completed session could not be stored."""
    pass


class ExportFailure(FusionError):
    """A sample series could not be written to its destination."""
    pass


class LinkError(FusionError):
    """Transport-level failure of the local sensor link."""
    pass
