"""Implements the lock file that keeps zmssl runs from overlapping."""
import errno
import fcntl
import logging
import os
from typing import Optional

from zmssl import errors

logger = logging.getLogger(__name__)


class LockFile:
    """A UNIX lock file.

    The lock is an exclusive ``fcntl`` lock on a file created with
    ``O_CREAT``, so checking for and taking the lock is one atomic step.
    A marker left behind by a killed process is not held by anyone and
    does not block later runs. The lock is released when the locked
    file is closed or the process exits. It cannot be used to provide
    synchronization between threads.

    """
    def __init__(self, path: str) -> None:
        """Initialize and acquire the lock file.

        :param str path: path to the file to lock

        :raises errors.LockError: if unable to acquire the lock

        """
        self._path = path
        self._fd: Optional[int] = None

        self.acquire()

    def acquire(self) -> None:
        """Acquire the lock file.

        :raises errors.LockError: if lock is already held
        :raises OSError: if unable to open or stat the lock file

        """
        while self._fd is None:
            fd = self._open()
            try:
                self._try_lock(fd)
                if self._lock_success(fd):
                    self._fd = fd
            finally:
                # Close the file if it is not the required one
                if self._fd is None:
                    os.close(fd)
        os.ftruncate(self._fd, 0)
        os.write(self._fd, "{0}\n".format(os.getpid()).encode())

    def _open(self) -> int:
        """Open the lock file, refusing to follow a symbolic link.

        :raises errors.LockError: if the path is a symbolic link

        """
        try:
            return os.open(self._path, os.O_CREAT | os.O_WRONLY | os.O_NOFOLLOW, 0o600)
        except OSError as err:
            if err.errno == errno.ELOOP:
                raise errors.LockError(
                    "Lock file {0} is a symbolic link; remove it and try "
                    "again.".format(self._path))
            raise

    def _try_lock(self, fd: int) -> None:
        """Try to acquire the lock file without blocking.

        :param int fd: file descriptor of the opened file to lock

        """
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except IOError as err:
            if err.errno in (errno.EACCES, errno.EAGAIN):
                logger.debug("A lock on %s is held by another process.", self._path)
                raise errors.LockError(
                    "Another instance of zmssl is already running "
                    "(lock file {0}).".format(self._path))
            raise

    def _lock_success(self, fd: int) -> bool:
        """Did we successfully grab the lock?

        Because this class deletes the locked file when the lock is
        released, it is possible another process removed and recreated
        the file between us opening the file and acquiring the lock.

        :param int fd: file descriptor of the opened file to lock

        :returns: True if the lock was successfully acquired
        :rtype: bool

        """
        try:
            stat1 = os.lstat(self._path)
        except OSError as err:
            if err.errno == errno.ENOENT:
                return False
            raise

        stat2 = os.fstat(fd)
        # If our locked file descriptor and the file on disk refer to
        # the same device and inode, they're the same file.
        return stat1.st_dev == stat2.st_dev and stat1.st_ino == stat2.st_ino

    def __repr__(self) -> str:
        repr_str = '{0}({1}) <'.format(self.__class__.__name__, self._path)
        if self._fd is None:
            repr_str += 'released>'
        else:
            repr_str += 'acquired>'
        return repr_str

    def is_locked(self) -> bool:
        """Is the lock currently held by this object?"""
        return self._fd is not None

    def release(self) -> None:
        """Remove, close, and release the lock file.

        Calling it on a released lock does nothing.

        """
        if self._fd is None:
            return
        # It is important the lock file is removed before it's released,
        # otherwise:
        #
        # process A: open lock file
        # process B: release lock file
        # process A: lock file
        # process A: check device and inode
        # process B: delete file
        # process C: open and lock a different file at the same path
        try:
            os.remove(self._path)
        finally:
            try:
                os.close(self._fd)
            finally:
                self._fd = None
