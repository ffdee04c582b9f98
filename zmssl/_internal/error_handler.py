"""Undoes what a zmssl run changed, however the run ends.

A run holds the system-wide lock and, while a certificate is requested,
may have stopped the platform proxy. Both must be given back on a normal
exit, on an error and when cron or an operator sends a terminating
signal. `ExitHandler` runs the registered steps in each of these cases.

"""
import functools
import logging
import os
import signal
import traceback
from types import TracebackType
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple
from typing import Type

from zmssl import errors

logger = logging.getLogger(__name__)


def _terminating_signals() -> Tuple[int, ...]:
    """Signals whose default action ends zmssl.

    SIGTERM is always watched. The others are skipped when the process
    was started with them ignored, as nohup does for SIGHUP.

    """
    watched = [signal.SIGTERM]
    for signum in (signal.SIGHUP, signal.SIGQUIT, signal.SIGXCPU, signal.SIGXFSZ):
        if signal.getsignal(signum) != signal.SIG_IGN:
            watched.append(signum)
    return tuple(watched)


TERMINATING_SIGNALS = _terminating_signals()


class ExitHandler:
    """Context manager running cleanup steps when its block is left.

    Usage::

        with ExitHandler(run_lock.release) as handler:
            handler.register(guard.restore_if_intervened)
            ...

    Steps run once each, newest first, whether the block finishes, raises
    or is interrupted. A step that fails is logged and the remaining steps
    still run.

    A terminating signal received inside the block stops it with
    `errors.SignalExit`. Once the steps ran and the previous signal
    handlers are back, the signal is sent again, so an enclosing handler
    or the default action sees it too. Signals arriving while steps run
    are held until the steps finish.

    """
    def __init__(self, func: Optional[Callable[..., Any]] = None,
                 *args: Any, **kwargs: Any) -> None:
        self._steps: List[Callable[[], Any]] = []
        self._previous: Dict[int, Any] = {}
        self._held: List[int] = []
        self._inside = False
        if func is not None:
            self.register(func, *args, **kwargs)

    def register(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Add a step to run when the block is left."""
        self._steps.append(functools.partial(func, *args, **kwargs))

    def __enter__(self) -> "ExitHandler":
        self._held = []
        for signum in TERMINATING_SIGNALS:
            current = signal.getsignal(signum)
            # None: installed outside Python and cannot be restored
            if current is not None:
                self._previous[signum] = current
                signal.signal(signum, self._on_signal)
        self._inside = True
        return self

    def __exit__(self, exc_type: Optional[Type[BaseException]],
                 exc_value: Optional[BaseException],
                 trace: Optional[TracebackType]) -> bool:
        self._inside = False
        if exc_type is not None and issubclass(exc_type, errors.SignalExit):
            logger.debug("Interrupted by %s", ", ".join(
                signal.Signals(signum).name for signum in self._held))
        elif exc_type is not None and not issubclass(exc_type, SystemExit):
            logger.debug("Cleaning up after %s", exc_type.__name__,
                         exc_info=(exc_type, exc_value, trace))
        self._run_steps()
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()
        for signum in self._held:
            logger.debug("Sending held signal %s again", signal.Signals(signum).name)
            os.kill(os.getpid(), signum)
        return False

    def _run_steps(self) -> None:
        while self._steps:
            step = self._steps.pop()
            try:
                step()
            except Exception as error:  # pylint: disable=broad-except
                logger.error("Cleanup step failed: %s", "".join(
                    traceback.format_exception_only(type(error), error)).rstrip())

    def _on_signal(self, signum: int, unused_frame: Any) -> None:
        self._held.append(signum)
        if self._inside:
            raise errors.SignalExit(
                "Received {0}".format(signal.Signals(signum).name))
