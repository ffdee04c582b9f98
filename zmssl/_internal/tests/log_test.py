"""Tests for zmssl._internal.log."""
import io
import logging
import os
import stat
import sys
import unittest
from unittest import mock

import pytest

from zmssl import errors
from zmssl import util
from zmssl._internal import constants
from zmssl._internal import log
from zmssl.tests import util as test_util


def _record(msg, level=logging.INFO, name="zmssl._internal.main"):
    return logging.makeLogRecord({"msg": msg, "levelno": level,
                                  "levelname": logging.getLevelName(level),
                                  "name": name})


class LoggingTestCase(test_util.PlatformTestCase):
    """Runs with a root logger of its own, put back afterwards."""

    def setUp(self):
        super().setUp()
        root_logger = logging.getLogger()
        saved = (root_logger.level, list(root_logger.handlers), sys.excepthook)
        for handler in saved[1]:
            root_logger.removeHandler(handler)
        self.addCleanup(self._restore, root_logger, saved)

    @staticmethod
    def _restore(root_logger, saved):
        level, handlers, excepthook = saved
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(level)
        sys.excepthook = excepthook


class SetupTest(LoggingTestCase):
    """Tests for pre_arg_parse_setup followed by post_arg_parse_setup."""

    def _pre(self, *argv):
        with mock.patch("zmssl._internal.log.util.atexit_register") as register:
            with mock.patch("zmssl._internal.log.sys.argv", ["zmssl"] + list(argv)):
                log.pre_arg_parse_setup()
        register.assert_called_once_with(logging.shutdown)

    def _handlers(self):
        return logging.getLogger().handlers

    def test_pre_quiet_terminal_and_buffer(self):
        self._pre("cron")
        kinds = sorted(type(handler).__name__ for handler in self._handlers())
        assert kinds == ["StartupBuffer", "TerminalHandler"]
        terminal = next(h for h in self._handlers() if isinstance(h, log.TerminalHandler))
        assert terminal.level == constants.QUIET_LOGGING_LEVEL
        assert sys.excepthook.keywords == {"debug": False, "quiet": False}

    def test_pre_flags_read_from_argv(self):
        self._pre("cron", "--debug", "-q")
        assert sys.excepthook.keywords == {"debug": True, "quiet": True}

    def test_early_records_reach_run_log(self):
        self._pre("check-expiry")
        logging.getLogger("zmssl.early").debug("before settings were known")
        config = self.config("check-expiry")
        log.post_arg_parse_setup(config)
        logging.getLogger("zmssl.late").debug("after settings were known")

        kinds = sorted(type(handler).__name__ for handler in self._handlers())
        assert kinds == ["RotatingFileHandler", "TerminalHandler"]
        for handler in self._handlers():
            handler.flush()
        with open(os.path.join(config.logs_dir, constants.LOG_FILE)) as f:
            contents = f.read()
        tag = "{0}-{1}".format(config.run.started, config.run.seed)
        assert ":{0}:zmssl.early:before settings were known".format(tag) in contents
        assert ":{0}:zmssl.late:after settings were known".format(tag) in contents

    def test_post_except_hook(self):
        self._pre("check-expiry")
        config = self.config("check-expiry", "--debug")
        log.post_arg_parse_setup(config)
        assert sys.excepthook.func is log.report_fatal
        assert sys.excepthook.keywords == {
            "debug": True, "quiet": False,
            "log_path": os.path.join(config.logs_dir, constants.LOG_FILE)}

    def test_post_without_pre(self):
        with pytest.raises(AssertionError, match="pre_arg_parse_setup"):
            log.post_arg_parse_setup(self.config("check-expiry"))


class TerminalLevelTest(test_util.PlatformTestCase):
    """Tests for zmssl._internal.log.terminal_level."""

    def test_default(self):
        assert log.terminal_level(self.config("check-expiry")) == logging.INFO

    def test_quiet(self):
        assert log.terminal_level(self.config("check-expiry", "-q")) == logging.ERROR

    def test_verbose(self):
        assert log.terminal_level(self.config("check-expiry", "-v")) == logging.DEBUG
        assert log.terminal_level(self.config("check-expiry", "-vvv")) == logging.DEBUG


class OpenRunLogTest(test_util.PlatformTestCase):
    """Tests for zmssl._internal.log.open_run_log."""

    def _open_and_write(self, config, msg):
        handler, path = log.open_run_log(config)
        handler.addFilter(log.RunFilter(config.run))
        handler.handle(_record(msg))
        handler.close()
        return path

    def test_first_run(self):
        config = self.config("check-expiry")
        path = self._open_and_write(config, "first run")
        assert path == os.path.join(config.logs_dir, "zmssl.log")
        assert not os.path.exists(path + ".1")
        assert stat.S_IMODE(os.stat(config.logs_dir).st_mode) & 0o077 == 0

    def test_each_run_gets_own_file(self):
        config = self.config("check-expiry")
        path = self._open_and_write(config, "first run")
        self._open_and_write(config, "second run")
        with open(path) as f:
            assert "second run" in f.read()
        with open(path + ".1") as f:
            assert "first run" in f.read()

    def test_no_backups(self):
        config = self.config("check-expiry", max_log_backups=0)
        path = self._open_and_write(config, "first run")
        self._open_and_write(config, "second run")
        assert not os.path.exists(path + ".1")

    def test_unusable_logs_dir(self):
        logs_dir = os.path.join(self.tempdir, "file")
        test_util.write_file(logs_dir)
        with pytest.raises(errors.Error, match="--logs-dir"):
            log.open_run_log(self.config("check-expiry", logs_dir=logs_dir))

    @mock.patch("zmssl._internal.log.logging.handlers.RotatingFileHandler")
    def test_unwritable_log_file(self, mock_handler):
        mock_handler.side_effect = PermissionError("denied")
        with pytest.raises(errors.Error, match="--logs-dir"):
            log.open_run_log(self.config("check-expiry"))


class TerminalHandlerTest(unittest.TestCase):
    """Tests for zmssl._internal.log.TerminalHandler."""

    def _emit(self, tty, level):
        stream = io.StringIO()
        stream.isatty = lambda: tty
        handler = log.TerminalHandler(stream)
        handler.handle(_record("renewal failed", level))
        return stream.getvalue()

    def test_plain_when_not_a_tty(self):
        assert self._emit(False, logging.ERROR) == "renewal failed\n"

    def test_red_warnings_on_tty(self):
        assert self._emit(True, logging.WARNING) == "{0}renewal failed{1}\n".format(
            util.ANSI_SGR_RED, util.ANSI_SGR_RESET)

    def test_info_uncolored_on_tty(self):
        assert self._emit(True, logging.INFO) == "renewal failed\n"


class StartupBufferTest(unittest.TestCase):
    """Tests for zmssl._internal.log.StartupBuffer."""

    def setUp(self):
        self.buffer = log.StartupBuffer()
        self.addCleanup(self.buffer.close)

    def test_never_flushes_itself(self):
        target = mock.MagicMock()
        self.buffer.setTarget(target)
        self.buffer.handle(_record("held", logging.CRITICAL))
        self.buffer.flush()
        target.handle.assert_not_called()

    def test_hand_over(self):
        stream = io.StringIO()
        target = logging.StreamHandler(stream)
        self.buffer.handle(_record("one"))
        self.buffer.handle(_record("two"))
        self.buffer.hand_over(target)
        assert stream.getvalue() == "one\ntwo\n"
        assert self.buffer.buffer == []

    def test_spill(self):
        self.buffer.handle(_record("parsing failed"))
        path = self.buffer.spill()
        assert path == self.buffer.spill_path
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        self.buffer.handle(_record("reported"))
        assert self.buffer.spill() == path
        self.buffer.close()
        with open(path) as f:
            contents = f.read()
        assert "INFO:zmssl._internal.main:parsing failed" in contents
        assert contents.index("parsing failed") < contents.index("reported")
        os.remove(path)
        os.rmdir(os.path.dirname(path))

    def test_nothing_written_without_spill(self):
        with mock.patch("zmssl._internal.log.tempfile.mkdtemp") as mkdtemp:
            self.buffer.handle(_record("--help shown"))
            self.buffer.close()
        mkdtemp.assert_not_called()


class DescribeFailureTest(unittest.TestCase):
    """Tests for zmssl._internal.log.describe_failure."""

    def _call(self, error):
        return log.describe_failure(type(error), error)

    def test_tool_failure_names_tool_log(self):
        error = errors.ExternalToolError("zmcertmgr", 1, "/var/log/zmssl/zmcertmgr-1.log")
        assert self._call(error) == [
            "zmcertmgr exited with status 1",
            "Output of zmcertmgr: /var/log/zmssl/zmcertmgr-1.log"]

    def test_tool_failure_without_log(self):
        error = errors.ExternalToolError("certbot", 127, None)
        assert self._call(error) == ["certbot exited with status 127"]

    def test_configuration_error(self):
        lines = self._call(errors.ConfigurationError("--days must be at most 30"))
        assert lines[0] == "--days must be at most 30"
        assert "--help" in lines[1]

    def test_lock_error(self):
        error = errors.AlreadyRunningError("Another instance of zmssl is already running")
        assert self._call(error) == ["Another instance of zmssl is already running"]

    def test_interrupted(self):
        assert self._call(errors.SignalExit("Received SIGTERM")) == [
            "Exiting due to user request."]
        assert self._call(KeyboardInterrupt()) == ["Exiting due to user request."]

    def test_unexpected(self):
        assert self._call(ValueError("bad value")) == [
            "An unexpected error occurred:", "ValueError: bad value"]


class ReportFatalTest(unittest.TestCase):
    """Tests for zmssl._internal.log.report_fatal."""

    def _call(self, error, debug=False, quiet=False):
        try:
            raise error
        except BaseException:  # pylint: disable=broad-except
            exc_info = sys.exc_info()
        with mock.patch("zmssl._internal.log.logger") as mock_logger:
            with pytest.raises(SystemExit) as exc_info_exit:
                log.report_fatal(*exc_info, debug=debug, quiet=quiet,
                                 log_path="/var/log/zmssl/zmssl.log")
        return mock_logger, exc_info_exit.value.code

    def test_error_points_at_log(self):
        mock_logger, code = self._call(errors.MissingCertificateError("cert.pem is missing"))
        mock_logger.error.assert_called_once_with("cert.pem is missing")
        assert mock_logger.log.call_args[0][0] == logging.DEBUG
        assert "/var/log/zmssl/zmssl.log" in code

    def test_debug_shows_traceback(self):
        mock_logger, _ = self._call(ValueError("bad value"), debug=True)
        level, _ = mock_logger.log.call_args[0]
        assert level == logging.ERROR
        assert mock_logger.log.call_args[1]["exc_info"][0] is ValueError

    def test_quiet(self):
        _, code = self._call(errors.ChainError("download failed"), quiet=True)
        assert code == 1

    def test_interrupted(self):
        _, code = self._call(errors.SignalExit("Received SIGTERM"))
        assert code == 1

    def test_tool_log_reported(self):
        mock_logger, _ = self._call(
            errors.ExternalToolError("zmcontrol", 2, "/var/log/zmssl/zmcontrol-1.log"))
        messages = [call[0][0] for call in mock_logger.error.call_args_list]
        assert messages == ["zmcontrol exited with status 2",
                            "Output of zmcontrol: /var/log/zmssl/zmcontrol-1.log"]


class PreArgParseExceptHookTest(unittest.TestCase):
    """Tests for zmssl._internal.log.pre_arg_parse_except_hook."""

    @mock.patch("zmssl._internal.log.report_fatal")
    def test_spills_before_and_after_report(self, mock_report):
        buffer = mock.MagicMock()
        buffer.spill.return_value = "/tmp/zmssl_log1/log"
        log.pre_arg_parse_except_hook(buffer, ValueError, ValueError("x"), None,
                                      debug=False, quiet=True)
        mock_report.assert_called_once_with(
            ValueError, mock.ANY, None, debug=False, quiet=True,
            log_path="/tmp/zmssl_log1/log")
        assert buffer.spill.call_count == 2

    def test_report_lands_in_temporary_file(self):
        buffer = log.StartupBuffer()
        logging.getLogger("zmssl._internal.log").addHandler(buffer)
        self.addCleanup(logging.getLogger("zmssl._internal.log").removeHandler, buffer)
        with pytest.raises(SystemExit) as exc_info:
            log.pre_arg_parse_except_hook(
                buffer, errors.ConfigurationError, errors.ConfigurationError("bad --days"),
                None, debug=False, quiet=False)
        buffer.close()
        assert buffer.spill_path in exc_info.value.code
        with open(buffer.spill_path) as f:
            assert "bad --days" in f.read()
        os.remove(buffer.spill_path)
        os.rmdir(os.path.dirname(buffer.spill_path))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__]))  # pragma: no cover
