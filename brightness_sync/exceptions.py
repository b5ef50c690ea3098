"""
Exceptions
==========
"""


class BrightnessSyncError(Exception):
    """Base class for all brightness sync errors."""
    pass


class BrightnessIOError(BrightnessSyncError):
    """Raised when a display's brightness cannot be read or written."""
    pass


class DDCError(BrightnessIOError):
    """Exception raised for DDC communication errors."""
    pass


class ConfigError(BrightnessSyncError):
    """Raised for configuration values that cannot be used."""
    pass
