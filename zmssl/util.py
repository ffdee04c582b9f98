"""Utilities for all zmssl."""
import atexit
import errno
import ipaddress
import logging
import os
import re
from typing import Any
from typing import Callable
from typing import IO
from typing import Optional

from zmssl import errors

logger = logging.getLogger(__name__)


# ANSI SGR escape codes
# Colors text red
ANSI_SGR_RED = "\033[31m"
# Resets output format
ANSI_SGR_RESET = "\033[0m"


PERM_ERR_FMT = os.linesep.join((
    "The following error was encountered:", "{0}",
    "Either run as root, or set --logs-dir to a writeable path."))


# Stores importing process ID to be used by atexit_register()
_INITIAL_PID = os.getpid()


def is_exe(path: str) -> bool:
    """Is path an executable file?

    :param str path: path to test

    :returns: True iff path is an executable file
    :rtype: bool

    """
    return os.path.isfile(path) and os.access(path, os.X_OK)


def make_or_verify_dir(directory: str, mode: int = 0o755) -> None:
    """Make sure directory exists.

    :param str directory: Path to a directory.
    :param int mode: Directory mode.

    :raises .errors.Error: if the directory cannot be made

    """
    try:
        os.makedirs(directory, mode)
    except OSError as exception:
        if exception.errno != errno.EEXIST:
            logger.debug("Exception was:", exc_info=True)
            raise errors.Error(PERM_ERR_FMT.format(exception))


def safe_open(path: str, mode: str = "w", chmod: Optional[int] = None) -> IO:
    """Safely open a file.

    :param str path: Path to a file.
    :param str mode: Same os `mode` for `open`.
    :param int chmod: Same as `mode` for `os.open`, uses Python defaults
        if ``None``.

    """
    open_args = () if chmod is None else (chmod,)
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_RDWR, *open_args)
    return os.fdopen(fd, mode)


def safe_email(email: str) -> bool:
    """Scrub email address before using it."""
    if re.match(r"^[^@]+@[^@]+\.[^@]+$", email) is not None:
        return not email.startswith(".") and ".." not in email
    logger.debug("Invalid email address: %s.", email)
    return False


def is_ipaddress(address: str) -> bool:
    """Is given address string form of IP(v4 or v6) address?"""
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def enforce_domain_sanity(domain: str) -> str:
    """Method which validates domain value and errors out if
    the requirements are not met.

    :param str domain: Domain to check
    :raises ConfigurationError: for invalid domains and cases where Let's
                                Encrypt will not issue an HTTP validated
                                certificate

    :returns: The domain lower-cased, with ASCII-only contents
    :rtype: str
    """
    try:
        domain.encode('ascii')
    except UnicodeError:
        raise errors.ConfigurationError(
            "Non-ASCII domain names not supported. "
            "To issue for an Internationalized Domain Name, use Punycode.")

    domain = domain.strip().lower()
    domain = domain[:-1] if domain.endswith('.') else domain

    for scheme in ["http", "https"]:
        if domain.startswith("{0}://".format(scheme)):
            raise errors.ConfigurationError(
                "Requested name {0} appears to be a URL, not a FQDN. "
                "Try again without the leading \"{1}://\".".format(domain, scheme))

    if domain.startswith("*"):
        raise errors.ConfigurationError(
            "Wildcard domain {0} needs DNS validation, which is not "
            "supported.".format(domain))

    if is_ipaddress(domain):
        raise errors.ConfigurationError(
            "Requested name {0} is an IP address. The Let's Encrypt "
            "certificate authority will not issue certificates for a "
            "bare IP address.".format(domain))

    # FQDN checks according to RFC 2181: domain name should be less than 255
    # octets (inclusive). And each label is 1 - 63 octets (inclusive).
    msg = "Requested domain {0} is not a FQDN because".format(domain)
    if not domain:
        raise errors.ConfigurationError("Requested domain is empty.")
    if len(domain) > 255:
        raise errors.ConfigurationError("{0} it is too long.".format(msg))
    for label in domain.split('.'):
        if not label:
            raise errors.ConfigurationError("{0} it contains an empty label.".format(msg))
        if len(label) > 63:
            raise errors.ConfigurationError("{0} label {1} is too long.".format(msg, label))

    return domain


def atexit_register(func: Callable, *args: Any, **kwargs: Any) -> None:
    """Sets func to be called before the program exits.

    Special care is taken to ensure func is only called when the process
    that first imports this module exits rather than any child processes.

    :param function func: function to be called in case of an error

    """
    atexit.register(_atexit_call, func, *args, **kwargs)


def _atexit_call(func: Callable, *args: Any, **kwargs: Any) -> None:
    if _INITIAL_PID == os.getpid():
        func(*args, **kwargs)
