"""Frame-accurate pose extraction and swing detection."""

__version__ = "0.1.0"
