"""Test utilities.

.. warning:: This module is not part of the public API.

"""
import argparse
import dataclasses
import datetime
import logging
import os
import shutil
import tempfile
import unittest
from multiprocessing import Event
from multiprocessing import Process
from typing import Any
from typing import Optional
from unittest import mock

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from zmssl._internal import cli
from zmssl._internal import configuration
from zmssl._internal import lock
from zmssl._internal import platform
from zmssl._internal.tools import ToolKind
from zmssl._internal.tools import ToolResult


def make_cert_pem(common_name: str, not_after: datetime.datetime,
                  issuer_name: Optional[str] = None) -> bytes:
    """Self-signed PEM certificate with the given subject and expiry."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME,
                                           issuer_name or common_name)])
    cert = (x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_after - datetime.timedelta(days=90))
            .not_valid_after(not_after)
            .sign(key, hashes.SHA256()))
    return cert.public_bytes(serialization.Encoding.PEM)


def write_cert(path: str, common_name: str = "mail.example.com",
               days: float = 60, now: Optional[datetime.datetime] = None) -> bytes:
    """Write a certificate expiring days after now to path."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    pem = make_cert_pem(common_name, now + datetime.timedelta(days=days))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(pem)
    return pem


def write_file(path: str, data: str = "data") -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(data)


def make_variant(root: str, name: str = "zimbra") -> platform.PlatformVariant:
    return platform.PlatformVariant(name=name, root=root, user=name)


def fake_account() -> mock.MagicMock:
    """Password entry of the current user, so chown succeeds in tests."""
    return mock.MagicMock(pw_name="zimbra", pw_uid=os.getuid(), pw_gid=os.getgid(),
                          pw_dir=tempfile.gettempdir())


def parse_args(*args: str) -> argparse.Namespace:
    """Parse a command line without reading any config file."""
    with mock.patch.dict(cli.constants.CLI_DEFAULTS, config_files=[]):
        return cli.prepare_and_parse_args(list(args))


def make_config(variant: platform.PlatformVariant, *args: str,
                environ: Optional[dict] = None, **overrides: Any) -> configuration.RunConfig:
    """Resolve a command line against variant, then apply overrides."""
    config = configuration.resolve(parse_args(*args), lambda: variant,
                                   environ if environ is not None else {})
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def tool_result(kind: ToolKind = ToolKind.SERVICE, exit_code: int = 0, output: str = "",
                argv: tuple = ("tool",), log_path: str = "/var/log/zmssl/tool.log") -> ToolResult:
    return ToolResult(kind=kind, argv=argv, exit_code=exit_code, output=output,
                      log_path=log_path)


class TempDirTestCase(unittest.TestCase):
    """Base test class which sets up and tears down a temporary directory"""

    def setUp(self) -> None:
        """Execute before test"""
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        """Execute after test"""
        # Cleanup opened resources after a test. This is usually done through atexit handlers in
        # zmssl, but during tests, atexit will not run registered functions before tearDown is
        # called and instead will run them right before the entire test process exits.
        logging.shutdown()
        # Remove logging handlers that have been closed so they won't be
        # accidentally used in future tests.
        logging.getLogger().handlers = []
        shutil.rmtree(self.tempdir)


class PlatformTestCase(TempDirTestCase):
    """Test class with a platform installed below the temporary directory."""

    def setUp(self) -> None:
        super().setUp()
        self.variant = make_variant(os.path.join(self.tempdir, "opt", "zimbra"))
        self.live_dir = os.path.join(self.tempdir, "live")
        account_patch = mock.patch.object(platform.PlatformVariant, "account",
                                          return_value=fake_account())
        account_patch.start()
        self.addCleanup(account_patch.stop)

    def config(self, *args: str, **overrides: Any) -> configuration.RunConfig:
        """Run settings whose issued material lives in ``self.live_dir``."""
        overrides.setdefault("bundle", configuration.CertificateBundle.from_name(
            "zimbra", live_dir=self.live_dir))
        overrides.setdefault("logs_dir", os.path.join(self.tempdir, "logs"))
        overrides.setdefault("lock_path", os.path.join(self.tempdir, "zmssl.lock"))
        return make_config(self.variant, *args, **overrides)


def _handle_lock(event_in: Event, event_out: Event, path: str) -> None:
    """
    Acquire a file lock on given path, then wait to release it. This worker is coordinated
    using events to signal when the lock should be acquired and released.
    :param multiprocessing.Event event_in: event object to signal when to release the lock
    :param multiprocessing.Event event_out: event object to signal when the lock is acquired
    :param path: the path to lock
    """
    my_lock = lock.LockFile(path)
    try:
        event_out.set()
        assert event_in.wait(timeout=20), 'Timeout while waiting to release the lock.'
    finally:
        my_lock.release()


def lock_and_call(callback: Any, path_to_lock: str) -> None:
    """
    Grab a lock on path_to_lock from a foreign process then execute the callback.
    :param callable callback: object to call after acquiring the lock
    :param str path_to_lock: path to file to lock
    """
    emit_event = Event()
    receive_event = Event()
    process = Process(target=_handle_lock, args=(emit_event, receive_event, path_to_lock))
    process.start()

    # Wait confirmation that lock is acquired
    assert receive_event.wait(timeout=10), 'Timeout while waiting to acquire the lock.'
    # Execute the callback
    callback()
    # Trigger unlock from foreign process
    emit_event.set()

    # Wait for process termination
    process.join(timeout=10)
    assert process.exitcode == 0
