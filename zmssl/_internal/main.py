"""zmssl main entry point and certificate pipeline."""
import datetime
import enum
import logging
import os
import shutil
import sys
from typing import Callable
from typing import List
from typing import Optional

import requests

import zmssl
from zmssl import errors
from zmssl import util
from zmssl._internal import chain
from zmssl._internal import cli
from zmssl._internal import configuration
from zmssl._internal import constants
from zmssl._internal import display
from zmssl._internal import error_handler
from zmssl._internal import lock
from zmssl._internal import log
from zmssl._internal import renewal
from zmssl._internal.configuration import RunConfig
from zmssl._internal.proxy import ProxyGuard
from zmssl._internal.tools import ToolGateway
from zmssl._internal.tools import acquisition_not_due

logger = logging.getLogger(__name__)


class Stage(enum.Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    ACQUIRING = "acquiring"
    CHAIN_BUILDING = "chain-building"
    VERIFYING = "verifying"
    DEPLOYING = "deploying"
    RESTARTING = "restarting"
    DONE = "done"
    FAILED = "failed"


class Outcome(enum.Enum):
    """How an action ended, when it did not raise."""
    DONE = "done"
    SKIPPED = "skipped"
    NOT_DUE = "not-due"


class Orchestrator:
    """Runs the stages of one action in order.

    Stages are entered one at a time and recorded in ``history``; an
    exception out of a stage leaves the orchestrator in `Stage.FAILED`
    and is re-raised. The proxy guard is restored on every way out of
    the acquisition stage.

    """
    def __init__(self, config: RunConfig,
                 gateway: Optional[ToolGateway] = None,
                 guard: Optional[ProxyGuard] = None,
                 session: Optional[requests.Session] = None,
                 confirm: Callable[[str, str], bool] = display.yesno,
                 now: Optional[datetime.datetime] = None) -> None:
        self.config = config
        self.gateway = gateway if gateway is not None else ToolGateway(config)
        self.guard = guard if guard is not None else ProxyGuard(self.gateway, config.http01_port)
        self.session = session
        self.confirm = confirm
        self.now = now
        self.stage = Stage.IDLE
        self.history: List[Stage] = []
        self._fresh = False

    def _enter(self, stage: Stage) -> None:
        logger.debug("Entering stage %s", stage.value)
        self.stage = stage
        self.history.append(stage)

    def _notify(self, msg: str) -> None:
        display.notify(msg, quiet=self.config.quiet)

    def run_action(self) -> Outcome:
        """Execute the configured action."""
        handler = getattr(self, "_action_" + self.config.action.replace("-", "_"))
        try:
            outcome = handler()
        except BaseException:
            self.stage = Stage.FAILED
            raise
        self.stage = Stage.DONE
        return outcome

    def _action_run(self) -> Outcome:
        self._enter(Stage.EVALUATING)
        logger.debug("Renewal check skipped for run")
        return self._pipeline()

    def _action_cron(self) -> Outcome:
        evaluation = self.evaluate()
        if not evaluation.due:
            self._notify("Certificate is not due for renewal ({0} days left, renewing at "
                         "{1}); nothing to do.".format(evaluation.days_remaining,
                                                       self.config.policy.threshold_days))
            return Outcome.SKIPPED
        return self._pipeline()

    def _action_get_cert(self) -> Outcome:
        self._enter(Stage.EVALUATING)
        if not self.acquire():
            return Outcome.SKIPPED
        self.build_chain()
        return Outcome.DONE

    def _action_build_chain(self) -> Outcome:
        self.build_chain()
        return Outcome.DONE

    def _action_copy_cert(self) -> Outcome:
        self.copy_cert(overwrite=self.config.policy.force_copy_overwrite)
        return Outcome.DONE

    def _action_verify_cert(self) -> Outcome:
        self.verify()
        return Outcome.DONE

    def _action_deploy(self) -> Outcome:
        self.verify()
        if not self.deploy():
            return Outcome.SKIPPED
        self._notify("Restart the services with zmcontrol restart to serve the new "
                     "certificate.")
        return Outcome.DONE

    def _action_check_expiry(self) -> Outcome:
        evaluation = self.evaluate()
        if evaluation.days_remaining is None:
            self._notify("Renewal forced with --force-getcert.")
        else:
            self._notify("Certificate {0} expires in {1} days; renewal threshold is {2} "
                         "days.".format(evaluation.cert_path, evaluation.days_remaining,
                                        self.config.policy.threshold_days))
        if evaluation.due:
            self._notify("The certificate is within the renewal window.")
            return Outcome.DONE
        return Outcome.NOT_DUE

    def _pipeline(self) -> Outcome:
        if not self.acquire():
            return Outcome.SKIPPED
        self.build_chain()
        self.verify()
        if not self.deploy():
            return Outcome.SKIPPED
        self.restart()
        return Outcome.DONE

    def evaluate(self) -> renewal.Evaluation:
        """Is the certificate due for renewal?"""
        self._enter(Stage.EVALUATING)
        return renewal.evaluate(self.config.bundle, self.config.variant,
                                self.config.policy, self.now)

    def acquire(self) -> bool:
        """Obtain the certificate and stage it.

        :returns: False if the ACME client found the certificate not yet due
        :rtype: bool

        :raises errors.ExternalToolError: if the ACME client fails

        """
        self._enter(Stage.ACQUIRING)
        force = self.config.policy.force_acquire
        with error_handler.ExitHandler(self.guard.restore_if_intervened):
            self.guard.ensure_port_free()
            result = self.gateway.acquire(force=force)
        if acquisition_not_due(result):
            self._notify("The ACME client reports the certificate is not yet due for "
                         "renewal; use --force-getcert to renew anyway or deploy to "
                         "install the existing certificate.")
            return False
        result.raise_for_status()
        self._fresh = True
        logger.info("Obtained certificate %s for %s", self.config.identity.name,
                    ", ".join(self.config.identity.domains))
        self.copy_cert(overwrite=True)
        return True

    def copy_cert(self, overwrite: bool) -> bool:
        """Copy the issued certificate and key to the staging directory.

        :param bool overwrite: replace files already staged

        :returns: False if staged files were kept
        :rtype: bool

        :raises errors.MissingCertificateError: if the issued files are missing

        """
        bundle = self.config.bundle
        variant = self.config.variant
        pairs = ((bundle.cert_path, variant.staged_cert, 0o644),
                 (bundle.key_path, variant.staged_key, 0o600))
        for source, _, _ in pairs:
            if not os.path.isfile(source):
                raise errors.MissingCertificateError(
                    "Issued file {0} does not exist".format(source))
        existing = [dest for _, dest, _ in pairs if os.path.exists(dest)]
        if existing and not overwrite:
            logger.warning("Not overwriting %s; use --force-copy to replace it",
                           ", ".join(existing))
            return False

        account = variant.account()
        util.make_or_verify_dir(variant.staging_dir, 0o755)
        for source, dest, mode in pairs:
            shutil.copyfile(source, dest)
            os.chmod(dest, mode)
            os.chown(dest, account.pw_uid, account.pw_gid)
        logger.info("Copied certificate and key to %s", variant.staging_dir)
        return True

    def build_chain(self) -> Optional[str]:
        """Write the staged chain bundle unless it is already current.

        :returns: path of the bundle written, None if it was current

        :raises errors.ChainError: if the bundle cannot be built

        """
        self._enter(Stage.CHAIN_BUILDING)
        bundle_path = self.config.variant.staged_chain_bundle
        if (not self._fresh and not self.config.policy.force_chain_rebuild
                and chain.is_current(self.config.bundle.chain_path, bundle_path)):
            logger.info("Chain bundle %s is current; use --force-getchain to rebuild it",
                        bundle_path)
            return None
        return chain.build(self.config.bundle.chain_path, self.config.variant, self.session)

    def verify(self) -> None:
        """Have the certificate manager verify the staged material.

        :raises errors.MissingCertificateError: if a staged file is missing
        :raises errors.ExternalToolError: if verification fails

        """
        self._enter(Stage.VERIFYING)
        variant = self.config.variant
        for path in (variant.staged_cert, variant.staged_key, variant.staged_chain_bundle):
            if not os.path.isfile(path):
                raise errors.MissingCertificateError(
                    "{0} does not exist; run get-cert, copy-cert or build-chain "
                    "first".format(path))
        self.gateway.verify(variant.staged_cert, variant.staged_key,
                            variant.staged_chain_bundle).raise_for_status()
        logger.info("Certificate, key and chain bundle verified")

    def deploy(self) -> bool:
        """Install the verified material in the commercial slot.

        :returns: False if the operator declined
        :rtype: bool

        :raises errors.ExternalToolError: if the certificate manager fails

        """
        self._enter(Stage.DEPLOYING)
        variant = self.config.variant
        if self.config.interactive and not self.confirm(
                "Deploy {0} as the commercial certificate of {1}?".format(
                    variant.staged_cert, variant.name), "--noconfirm"):
            self._notify("Deployment cancelled.")
            return False

        account = variant.account()
        util.make_or_verify_dir(variant.commercial_dir, 0o755)
        shutil.copyfile(variant.staged_key, variant.commercial_key)
        os.chmod(variant.commercial_key, 0o640)
        os.chown(variant.commercial_key, account.pw_uid, account.pw_gid)
        self.gateway.deploy(variant.staged_cert, variant.staged_chain_bundle).raise_for_status()
        self._notify("Certificate deployed to {0}.".format(variant.commercial_dir))
        return True

    def restart(self) -> None:
        """Restart the platform so it serves the deployed certificate.

        A failed restart leaves the deployed certificate in place.

        :raises errors.ExternalToolError: if the restart fails

        """
        if self.config.norestart:
            self._notify("Not restarting services; run zmcontrol restart to serve the "
                         "new certificate.")
            return
        if self.config.interactive and not self.confirm(
                "Restart all {0} services now?".format(self.config.variant.name),
                "--noconfirm"):
            self._notify("Run zmcontrol restart to serve the new certificate.")
            return
        self._enter(Stage.RESTARTING)
        result = self.gateway.service("all", "restart")
        if not result.ok:
            logger.error("The certificate is deployed but the services failed to restart.")
        result.raise_for_status()
        self._notify("Services restarted.")


def run(config: RunConfig) -> Outcome:
    """Run the configured action while holding the lock.

    The lock is taken before anything is written and released on every
    way out, including signals.

    :raises errors.LockError: if another run holds the lock

    """
    run_lock = lock.LockFile(config.lock_path)
    util.atexit_register(run_lock.release)
    with error_handler.ExitHandler(run_lock.release):
        log.post_arg_parse_setup(config)
        logger.debug("Run %s-%s: %s", config.run.started, config.run.seed, config.action)
        return Orchestrator(config).run_action()


def exit_code(outcome: Outcome) -> int:
    """Exit status for an action that did not raise."""
    if outcome is Outcome.NOT_DUE:
        return constants.EXIT_NOT_DUE
    return 0


def main(cli_args: Optional[List[str]] = None) -> int:
    """Run zmssl.

    :param cli_args: command line to zmssl, defaults to ``sys.argv[1:]``
    :type cli_args: `list` of `str`

    :returns: value for `sys.exit` about the exit status of zmssl
    :rtype: int

    """
    if cli_args is None:
        cli_args = sys.argv[1:]

    log.pre_arg_parse_setup()
    logger.debug("zmssl version: %s", zmssl.__version__)
    logger.debug("Arguments: %r", cli_args)

    # note: arg parser internally handles --help (and exits afterwards)
    args = cli.prepare_and_parse_args(cli_args)
    config = configuration.resolve(args)

    return exit_code(run(config))
