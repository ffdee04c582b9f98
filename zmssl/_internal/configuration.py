"""Resolved, immutable settings of one zmssl run."""
import argparse
import dataclasses
import logging
import os
import secrets
import time
from typing import Callable
from typing import Mapping
from typing import Optional
from typing import Tuple

from zmssl import errors
from zmssl import util
from zmssl._internal import constants
from zmssl._internal import platform

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CertificateIdentity:
    """Name of the ACME client's certificate slot and what it covers.

    The first domain becomes the subject, all of them become SANs.

    """
    name: str
    domains: Tuple[str, ...] = ()
    email: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class CertificateBundle:
    """Locally issued certificate material."""
    cert_path: str
    key_path: str
    chain_path: str

    @classmethod
    def from_name(cls, name: str, live_dir: str = constants.LIVE_DIR) -> "CertificateBundle":
        """Conventional location of the material issued under name."""
        lineage = os.path.join(live_dir, name)
        return cls(cert_path=os.path.join(lineage, constants.LIVE_CERT),
                   key_path=os.path.join(lineage, constants.LIVE_KEY),
                   chain_path=os.path.join(lineage, constants.LIVE_CHAIN))


@dataclasses.dataclass(frozen=True)
class RenewalPolicy:
    threshold_days: int = constants.CLI_DEFAULTS["days"]
    force_acquire: bool = False
    force_chain_rebuild: bool = False
    force_copy_overwrite: bool = False


@dataclasses.dataclass(frozen=True)
class PipelineRun:
    """Identifies one invocation.

    ``seed`` and ``started`` namespace the diagnostic logs of external
    tools so that runs never overwrite each other's output.

    """
    action: str
    seed: str
    started: str

    @classmethod
    def new(cls, action: str) -> "PipelineRun":
        return cls(action=action, seed=secrets.token_hex(4),
                   started=time.strftime("%Y%m%d-%H%M%S"))


@dataclasses.dataclass(frozen=True)
class RunConfig:
    """Everything a run needs, resolved once from the command line.

    No component reads process state on its own; this object is passed
    to each of them instead.

    """
    action: str
    identity: CertificateIdentity
    bundle: CertificateBundle
    policy: RenewalPolicy
    variant: platform.PlatformVariant
    run: PipelineRun
    staging: bool = False
    preferred_chain: Optional[str] = None
    http01_port: int = constants.CLI_DEFAULTS["http01_port"]
    noconfirm: bool = False
    norestart: bool = False
    logs_dir: str = constants.CLI_DEFAULTS["logs_dir"]
    lock_path: str = constants.CLI_DEFAULTS["lock_path"]
    verbose_count: int = 0
    quiet: bool = False
    debug: bool = False
    max_log_backups: int = constants.CLI_DEFAULTS["max_log_backups"]

    @property
    def interactive(self) -> bool:
        """Should the operator be asked before deploying or restarting?"""
        return self.action in constants.INTERACTIVE_ACTIONS and not self.noconfirm


def _resolve_action(tokens) -> str:
    if not tokens:
        raise errors.ConfigurationError(
            "No action given; choose one of: {0}".format(", ".join(constants.ACTIONS)))
    if len(tokens) > 1:
        raise errors.ConfigurationError(
            "Only one action may be given per invocation, got: {0}".format(" ".join(tokens)))
    action = tokens[0]
    if action not in constants.ACTIONS:
        raise errors.ConfigurationError(
            "Unknown action {0}; choose one of: {1}".format(
                action, ", ".join(constants.ACTIONS)))
    return action


def _resolve_domains(raw_domains) -> Tuple[str, ...]:
    domains = []
    for entry in raw_domains or ():
        for domain in entry.split(","):
            domain = util.enforce_domain_sanity(domain)
            if domain not in domains:
                domains.append(domain)
    return tuple(domains)


def _check_name_and_overrides(name: Optional[str], overrides, default_names) -> None:
    if name and overrides and name not in default_names:
        raise errors.ConfigurationError(
            "A certificate name (-n {0}) cannot be combined with -c/--cert, "
            "-C/--chain or -p/--priv".format(name))


def resolve(args: argparse.Namespace,
            detect_platform: Callable[[], platform.PlatformVariant] = platform.detect,
            environ: Optional[Mapping[str, str]] = None) -> RunConfig:
    """Validate parsed command line arguments and build the run settings.

    Checks that only need the arguments themselves happen before the
    platform is probed, and nothing here starts a subprocess.

    :param argparse.Namespace args: parsed command line
    :param detect_platform: callable returning the installed platform
    :param environ: process environment, `os.environ` by default

    :returns: resolved settings
    :rtype: RunConfig

    :raises errors.ConfigurationError: if the arguments are invalid or conflict
    :raises errors.PlatformError: if the platform cannot be determined

    """
    if environ is None:
        environ = os.environ

    action = _resolve_action(args.action)
    policy = RenewalPolicy(threshold_days=args.days,
                           force_acquire=args.force_getcert,
                           force_chain_rebuild=args.force_getchain,
                           force_copy_overwrite=args.force_copy)
    if policy.threshold_days <= 0:
        raise errors.ConfigurationError(
            "--days must be a positive number of days, got {0}".format(policy.threshold_days))
    if policy.threshold_days > constants.MAX_RENEWAL_DAYS and not policy.force_acquire:
        raise errors.ConfigurationError(
            "--days {0} exceeds the {1} day renewal window; use --force-getcert "
            "to renew anyway".format(policy.threshold_days, constants.MAX_RENEWAL_DAYS))

    domains = _resolve_domains(args.domains)
    if action in constants.ACQUIRE_ACTIONS and not domains:
        raise errors.ConfigurationError(
            "The {0} action needs at least one domain (-d/--domain)".format(action))
    if args.email is not None and not util.safe_email(args.email):
        raise errors.ConfigurationError("Invalid email address: {0}".format(args.email))
    if not 0 < args.http01_port < 65536:
        raise errors.ConfigurationError("Invalid --http-port {0}".format(args.http01_port))

    overrides = [path for path in (args.cert_path, args.chain_path, args.key_path)
                 if path is not None]
    # Known before probing the platform: a name no variant uses by default.
    _check_name_and_overrides(args.certname, overrides,
                              {variant.name for variant in platform.KNOWN_VARIANTS})

    variant = detect_platform()
    name = args.certname if args.certname else variant.name
    _check_name_and_overrides(name, overrides, {variant.name})

    default_bundle = CertificateBundle.from_name(name)
    bundle = CertificateBundle(
        cert_path=os.path.abspath(args.cert_path) if args.cert_path else default_bundle.cert_path,
        key_path=os.path.abspath(args.key_path) if args.key_path else default_bundle.key_path,
        chain_path=(os.path.abspath(args.chain_path) if args.chain_path
                    else default_bundle.chain_path))

    staging = bool(environ.get(constants.STAGING_ENV_VAR))
    if staging:
        logger.warning("%s is set: using the ACME staging server, the certificate "
                       "will not be trusted", constants.STAGING_ENV_VAR)

    return RunConfig(
        action=action,
        identity=CertificateIdentity(name=name, domains=domains, email=args.email),
        bundle=bundle,
        policy=policy,
        variant=variant,
        run=PipelineRun.new(action),
        staging=staging,
        preferred_chain=args.preferred_chain,
        http01_port=args.http01_port,
        noconfirm=args.noconfirm,
        norestart=args.norestart,
        logs_dir=args.logs_dir,
        lock_path=args.lock_path,
        verbose_count=args.verbose_count,
        quiet=args.quiet,
        debug=args.debug,
        max_log_backups=args.max_log_backups,
    )
