"""Invocation of the external programs zmssl drives.

Three kinds of tools are used: the ACME client obtains certificates, the
platform's certificate manager verifies and installs them and the
platform's service controllers stop and start its components. Every
invocation blocks until the program exits, is never retried and has its
combined stdout and stderr saved to a diagnostic log of its own.

"""
import dataclasses
import enum
import itertools
import logging
import os
import subprocess
from typing import List
from typing import Optional
from typing import Sequence

from zmssl import errors
from zmssl import util
from zmssl._internal import constants
from zmssl._internal.configuration import RunConfig

logger = logging.getLogger(__name__)


class ToolKind(enum.Enum):
    """What an external program is used for."""
    ACQUISITION = "acme"
    CERTIFICATE = "certmgr"
    SERVICE = "service"


SERVICE_CONTROLLERS = {
    "all": "zmcontrol",
    "proxy": "zmproxyctl",
}
"""Platform program controlling each named component."""

SERVICE_VERBS = ("start", "stop", "status", "restart")


@dataclasses.dataclass(frozen=True)
class ToolResult:
    kind: ToolKind
    argv: Sequence[str]
    exit_code: int
    output: str
    log_path: Optional[str]

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self) -> "ToolResult":
        """Raise `errors.ExternalToolError` unless the program succeeded."""
        if not self.ok:
            raise errors.ExternalToolError(
                os.path.basename(self.argv[0]), self.exit_code, self.log_path)
        return self


def acquisition_not_due(result: ToolResult) -> bool:
    """Did the ACME client decline to renew because it is too early?

    Based on the client's human readable output, which may change between
    client releases; `constants.NOT_DUE_MARKERS` is the single place to
    update when it does.

    """
    if result.kind is not ToolKind.ACQUISITION:
        return False
    output = result.output.lower()
    return any(marker in output for marker in constants.NOT_DUE_MARKERS)


class ToolGateway:
    """Runs external programs on behalf of one zmssl run.

    :ivar RunConfig config: settings of the run

    """
    def __init__(self, config: RunConfig) -> None:
        self.config = config
        self._counter = itertools.count(1)

    def invoke(self, kind: ToolKind, argv: List[str],
               as_service_account: bool = False) -> ToolResult:
        """Run argv to completion and record what it printed.

        :param ToolKind kind: purpose of the program
        :param list argv: program and arguments
        :param bool as_service_account: drop to the platform's account and
            run from the platform's root directory

        :returns: exit status, output and log location
        :rtype: ToolResult

        """
        log_path = self._log_path(argv[0])
        logger.debug("Running %s", " ".join(argv))
        kwargs = {}
        if as_service_account:
            account = self.config.variant.account()

            def drop_privileges() -> None:
                """Set the user and group id before executing command"""
                os.setgid(account.pw_gid)
                os.setuid(account.pw_uid)

            env = dict(os.environ, HOME=account.pw_dir, USER=account.pw_name)
            kwargs = dict(preexec_fn=drop_privileges, cwd=self.config.variant.root, env=env)
        try:
            proc = subprocess.run(argv, check=False,
                                  stdin=subprocess.DEVNULL,
                                  stdout=subprocess.PIPE,
                                  stderr=subprocess.STDOUT,
                                  encoding="utf-8", errors="replace",
                                  **kwargs)
        except (OSError, ValueError, subprocess.SubprocessError) as error:
            output = "Unable to run the command: {0}\n{1}\n".format(" ".join(argv), error)
            exit_code = 127
        else:
            output = proc.stdout or ""
            exit_code = proc.returncode

        log_path = self._write_log(log_path, argv, exit_code, output)
        if exit_code != 0:
            logger.debug("%s exited with status %d", argv[0], exit_code)
        return ToolResult(kind=kind, argv=tuple(argv), exit_code=exit_code,
                          output=output, log_path=log_path)

    def _log_path(self, program: str) -> str:
        run = self.config.run
        return os.path.join(self.config.logs_dir, "{0}-{1}-{2}-{3:02d}.log".format(
            os.path.basename(program), run.started, run.seed, next(self._counter)))

    def _write_log(self, log_path: str, argv: Sequence[str], exit_code: int,
                   output: str) -> Optional[str]:
        try:
            util.make_or_verify_dir(self.config.logs_dir, 0o700)
            with util.safe_open(log_path, mode="w", chmod=0o600) as log_file:
                log_file.write("$ {0}\n{1}\nexit status: {2}\n".format(
                    " ".join(argv), output, exit_code))
        except (OSError, errors.Error) as error:
            logger.warning("Unable to save output of %s to %s: %s", argv[0], log_path, error)
            return None
        return log_path

    def acquire(self, force: bool) -> ToolResult:
        """Ask the ACME client for the certificate of the run's identity.

        The client answers the HTTP-01 challenge itself, so the challenge
        port must be free.

        :param bool force: renew even if the client thinks it is too early

        """
        identity = self.config.identity
        argv = [constants.ACME_CLIENT, "certonly",
                "--standalone", "--preferred-challenges", "http",
                "--http-01-port", str(self.config.http01_port),
                "--non-interactive", "--agree-tos",
                "--cert-name", identity.name]
        for domain in identity.domains:
            argv.extend(["-d", domain])
        if identity.email:
            argv.extend(["--email", identity.email])
        else:
            argv.append("--register-unsafely-without-email")
        if self.config.staging:
            argv.append("--staging")
        if force:
            argv.append("--force-renewal")
        else:
            argv.append("--keep-until-expiring")
        if self.config.preferred_chain:
            argv.extend(["--preferred-chain", self.config.preferred_chain])
        return self.invoke(ToolKind.ACQUISITION, argv)

    def verify(self, cert_path: str, key_path: str, chain_path: str) -> ToolResult:
        """Check that key, certificate and chain belong together."""
        argv = [self.config.variant.bin("zmcertmgr"), "verifycrt", "comm",
                key_path, cert_path, chain_path]
        return self.invoke(ToolKind.CERTIFICATE, argv, as_service_account=True)

    def deploy(self, cert_path: str, chain_path: str) -> ToolResult:
        """Install a verified certificate in the commercial slot.

        The matching key must already be in the slot.

        """
        argv = [self.config.variant.bin("zmcertmgr"), "deploycrt", "comm",
                cert_path, chain_path]
        return self.invoke(ToolKind.CERTIFICATE, argv, as_service_account=True)

    def service(self, component: str, verb: str) -> ToolResult:
        """Start, stop, query or restart a platform component.

        :param str component: one of `SERVICE_CONTROLLERS`
        :param str verb: one of `SERVICE_VERBS`

        """
        if component not in SERVICE_CONTROLLERS:
            raise ValueError("Unknown component {0}".format(component))
        if verb not in SERVICE_VERBS:
            raise ValueError("Unknown service verb {0}".format(verb))
        argv = [self.config.variant.bin(SERVICE_CONTROLLERS[component]), verb]
        return self.invoke(ToolKind.SERVICE, argv, as_service_account=True)
