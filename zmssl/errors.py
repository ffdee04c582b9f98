"""zmssl errors."""
from typing import Optional


class Error(Exception):
    """Generic zmssl error."""


class ConfigurationError(Error):
    """Invalid or conflicting command line options."""


class PreconditionError(Error):
    """A file, platform or lock required by the action is unavailable."""


class LockError(PreconditionError):
    """File locking error."""


AlreadyRunningError = LockError


class MissingCertificateError(PreconditionError):
    """An expected certificate, chain or key file does not exist."""


class PlatformError(PreconditionError):
    """The installed groupware platform could not be determined."""


class SubprocessError(Error):
    """Subprocess handling error."""


class ExternalToolError(SubprocessError):
    """An external program exited with a nonzero status.

    :ivar str tool: kind of tool that failed
    :ivar int exit_code: exit status of the program
    :ivar str log_path: file holding the program's combined output

    """
    def __init__(self, tool: str, exit_code: int, log_path: Optional[str],
                 message: Optional[str] = None) -> None:
        self.tool = tool
        self.exit_code = exit_code
        self.log_path = log_path
        if message is None:
            message = "{0} exited with status {1}".format(tool, exit_code)
        super().__init__(message)


class ChainError(Error):
    """The certificate chain bundle could not be built."""


class SignalExit(Error):
    """A terminating signal interrupted a block guarded by an ExitHandler."""
