"""Logging for zmssl runs.

Logging is set up in two steps. `pre_arg_parse_setup` keeps the terminal
quiet and holds every record in memory. Should zmssl fail before its
settings are resolved, the held records are written to a private
temporary file and the operator is pointed at it. `post_arg_parse_setup`
opens the rotating ``zmssl.log`` in the logs directory, replays the held
records into it and sets terminal verbosity from ``-v`` and ``-q``.

Lines of ``zmssl.log`` carry the run they belong to, as
``<started>-<seed>``, the same pair that names the per-tool logs written
by `zmssl._internal.tools`.

"""
import functools
import logging
import logging.handlers
import os
import sys
import tempfile
import traceback
from types import TracebackType
from typing import IO
from typing import List
from typing import Optional
from typing import Tuple
from typing import Type

from zmssl import errors
from zmssl import util
from zmssl._internal import constants
from zmssl._internal.configuration import PipelineRun
from zmssl._internal.configuration import RunConfig

TERMINAL_FMT = "%(message)s"
EARLY_FMT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"
RUN_FMT = "%(asctime)s:%(levelname)s:%(run)s:%(name)s:%(message)s"

ROTATE_AT_BYTES = 2 ** 20

logger = logging.getLogger(__name__)


def pre_arg_parse_setup() -> None:
    """Hold records in memory and report early failures.

    ``--debug`` and ``-q`` are looked up in `sys.argv` directly, as
    parsing may be what fails.

    """
    buffer = StartupBuffer()
    terminal = TerminalHandler()
    terminal.setFormatter(logging.Formatter(TERMINAL_FMT))
    terminal.setLevel(constants.QUIET_LOGGING_LEVEL)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(buffer)
    root_logger.addHandler(terminal)

    util.atexit_register(logging.shutdown)
    argv = sys.argv[1:]
    sys.excepthook = functools.partial(
        pre_arg_parse_except_hook, buffer,
        debug="--debug" in argv, quiet="--quiet" in argv or "-q" in argv)


def post_arg_parse_setup(config: RunConfig) -> None:
    """Send logging to the run log and set terminal verbosity.

    Expects the handlers installed by `pre_arg_parse_setup` on the root
    logger.

    :param RunConfig config: settings of the run

    """
    root_logger = logging.getLogger()
    buffer = _installed(root_logger, StartupBuffer)
    terminal = _installed(root_logger, TerminalHandler)

    run_log, path = open_run_log(config)
    run_log.addFilter(RunFilter(config.run))
    root_logger.addHandler(run_log)
    root_logger.removeHandler(buffer)
    buffer.hand_over(run_log)

    terminal.setLevel(terminal_level(config))
    logger.debug("Saving debug log to %s", path)
    sys.excepthook = functools.partial(
        report_fatal, debug=config.debug, quiet=config.quiet, log_path=path)


def _installed(root_logger: logging.Logger, kind: type) -> logging.Handler:
    for handler in root_logger.handlers:
        if isinstance(handler, kind):
            return handler
    raise AssertionError("{0} is not installed; call pre_arg_parse_setup "
                         "first".format(kind.__name__))


def terminal_level(config: RunConfig) -> int:
    """Level of records shown on the terminal for the run."""
    if config.quiet:
        return constants.QUIET_LOGGING_LEVEL
    return max(logging.DEBUG,
               constants.DEFAULT_LOGGING_LEVEL - 10 * config.verbose_count)


def open_run_log(config: RunConfig) -> Tuple[logging.Handler, str]:
    """Open ``zmssl.log`` in the logs directory.

    The previous run's log is rotated away first, so every run starts
    its own file. At most ``config.max_log_backups`` old logs are kept.

    :raises errors.Error: if the logs directory or file is unusable

    """
    util.make_or_verify_dir(config.logs_dir, 0o700)
    path = os.path.join(config.logs_dir, constants.LOG_FILE)
    try:
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=ROTATE_AT_BYTES, backupCount=config.max_log_backups)
    except OSError as error:
        raise errors.Error(util.PERM_ERR_FMT.format(error))
    if os.path.getsize(path):
        handler.doRollover()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(RUN_FMT))
    return handler, path


class RunFilter(logging.Filter):
    """Stamps records with the run they were logged in."""

    def __init__(self, run: PipelineRun) -> None:
        super().__init__()
        self.tag = "{0}-{1}".format(run.started, run.seed)

    def filter(self, record: logging.LogRecord) -> bool:
        record.run = self.tag
        return True


class TerminalHandler(logging.StreamHandler):
    """Writes to stderr, in red from WARNING up when stderr is a terminal."""

    def __init__(self, stream: Optional[IO] = None) -> None:
        super().__init__(stream)
        self.colored = self.stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if self.colored and record.levelno >= logging.WARNING:
            return util.ANSI_SGR_RED + text + util.ANSI_SGR_RESET
        return text


class StartupBuffer(logging.handlers.MemoryHandler):
    """Holds records until zmssl knows where its log goes.

    Nothing is flushed on its own: `hand_over` replays the records into
    the run log, `spill` writes them to a private temporary file. A run
    that exits early without failing, as ``--help`` does, leaves no file
    behind.

    :ivar str spill_path: temporary file the records were spilled to

    """
    def __init__(self, capacity: int = 10000) -> None:
        super().__init__(capacity)
        self.spill_path: Optional[str] = None

    def shouldFlush(self, record: logging.LogRecord) -> bool:
        return False

    def flush(self) -> None:
        """Records stay here until `hand_over` or `spill`."""

    def _replay(self, target: logging.Handler) -> None:
        self.acquire()
        try:
            held: List[logging.LogRecord] = self.buffer
            self.buffer = []
        finally:
            self.release()
        for record in held:
            target.handle(record)

    def hand_over(self, handler: logging.Handler) -> None:
        """Replay the held records into handler and stop buffering."""
        self._replay(handler)
        self.close()

    def spill(self) -> str:
        """Write the held records to the temporary file.

        The file is created with permissions 600 on the first call; later
        calls append what was logged since.

        :returns: path of the temporary file
        :rtype: str

        """
        if self.target is None:
            workdir = tempfile.mkdtemp(prefix="zmssl_log")
            self.spill_path = os.path.join(workdir, "log")
            spill_handler = logging.StreamHandler(
                util.safe_open(self.spill_path, mode="w", chmod=0o600))
            spill_handler.setFormatter(logging.Formatter(EARLY_FMT))
            self.setTarget(spill_handler)
        self._replay(self.target)
        self.target.flush()
        return self.spill_path

    def close(self) -> None:
        target = self.target
        super().close()
        if isinstance(target, logging.StreamHandler):
            target.stream.close()
            target.close()


def pre_arg_parse_except_hook(buffer: StartupBuffer,
                              exc_type: Type[BaseException], exc_value: BaseException,
                              trace: TracebackType, debug: bool, quiet: bool) -> None:
    """Report a failure that happened before the run log was opened.

    The held records, and the report itself, go to the temporary file
    the operator is pointed at.

    """
    path = buffer.spill()
    try:
        report_fatal(exc_type, exc_value, trace, debug=debug, quiet=quiet, log_path=path)
    finally:
        buffer.spill()


def describe_failure(exc_type: Type[BaseException], exc_value: BaseException) -> List[str]:
    """Lines telling the operator what stopped the run."""
    if issubclass(exc_type, (KeyboardInterrupt, errors.SignalExit)):
        return ["Exiting due to user request."]
    if issubclass(exc_type, errors.ExternalToolError):
        lines = [str(exc_value)]
        if exc_value.log_path:
            lines.append("Output of {0}: {1}".format(exc_value.tool, exc_value.log_path))
        return lines
    if issubclass(exc_type, errors.ConfigurationError):
        return [str(exc_value), "Run zmssl --help for the accepted options."]
    if issubclass(exc_type, errors.Error):
        return [str(exc_value)]
    return ["An unexpected error occurred:", "".join(
        traceback.format_exception_only(exc_type, exc_value)).rstrip()]


def report_fatal(exc_type: Type[BaseException], exc_value: BaseException,
                 trace: TracebackType, debug: bool, quiet: bool,
                 log_path: str) -> None:
    """Log the failure that ends zmssl and exit with status 1.

    The traceback always reaches the debug log and is shown on the
    terminal with ``--debug``. Unless running quietly or interrupted, the
    exit message names the debug log.

    """
    logger.log(logging.ERROR if debug else logging.DEBUG, "Exiting abnormally:",
               exc_info=(exc_type, exc_value, trace))
    for line in describe_failure(exc_type, exc_value):
        logger.error(line)
    if quiet or issubclass(exc_type, (KeyboardInterrupt, errors.SignalExit)):
        sys.exit(1)
    sys.exit("The debug log is {0}; re-run zmssl with -v for more details.".format(log_path))
