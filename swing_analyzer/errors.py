"""Exception types raised by the swing analyzer."""


class SwingAnalyzerError(Exception):
    """Base class for all swing analyzer errors."""


class MediaSourceError(SwingAnalyzerError):
    """The media source is missing, cannot be opened, or reports no duration."""


class PlaybackError(MediaSourceError):
    """A play request was rejected or playback ended before it was expected to."""


class ExtractionAborted(SwingAnalyzerError):
    """Raised inside the extraction loop when the abort flag is observed."""


class PoseMapFormatError(SwingAnalyzerError):
    """A persisted pose map could not be decoded."""
