"""Error taxonomy for Auto File Uploader.

None of these ever reach the scheduler: each one is caught at the
boundary of the step that raised it and logged.
"""


class AutoUploaderError(Exception):
    """Base class for all uploader errors."""


class ConfigurationError(AutoUploaderError):
    """The configuration is incomplete or names an unknown backend."""


class WatchSetupError(AutoUploaderError):
    """The watched directory is missing, not a directory, or cannot be watched."""


class NotificationWaitInterrupted(AutoUploaderError):
    """The blocking wait for change notifications was interrupted."""


class SessionAcquireError(AutoUploaderError):
    """No repository session could be obtained."""


class IngestionError(AutoUploaderError):
    """A single file could not be written to the asset repository."""


class CronParseError(AutoUploaderError, ValueError):
    """A schedule expression could not be parsed or never fires."""
