"""Operator prompts."""
import logging
import os
import sys
from typing import IO
from typing import Optional

logger = logging.getLogger(__name__)

SIDE_FRAME = "- " * 39


def notify(msg: str, quiet: bool = False, outfile: Optional[IO] = None) -> None:
    """Display a basic status message unless running quietly.

    :param str msg: message to display

    """
    logger.debug("Notifying user: %s", msg)
    if quiet:
        return
    outfile = sys.stdout if outfile is None else outfile
    outfile.write(msg + os.linesep)
    outfile.flush()


def yesno(message: str, cli_flag: str, infile: Optional[IO] = None,
          outfile: Optional[IO] = None) -> bool:
    """Query the operator with a yes/no question.

    Without a terminal to ask on, the answer is "No" and a warning names
    the flag that skips the question.

    :param str message: question for the operator
    :param str cli_flag: option that answers the question in advance

    :returns: True for "Yes", False for "No"
    :rtype: bool

    """
    infile = sys.stdin if infile is None else infile
    outfile = sys.stdout if outfile is None else outfile
    if not infile.isatty():
        logger.warning("Cannot ask %r without a terminal; assuming no. Use %s to "
                       "proceed without asking.", message, cli_flag)
        return False

    outfile.write("{0}{frame}{msg}{0}{frame}".format(
        os.linesep, frame=SIDE_FRAME + os.linesep, msg=message + os.linesep))
    outfile.flush()
    while True:
        outfile.write("(Y)es/(N)o: ")
        outfile.flush()
        ans = infile.readline()
        if not ans:
            return False
        ans = ans.strip().lower()
        if ans.startswith("y"):
            return True
        if ans.startswith("n"):
            return False
