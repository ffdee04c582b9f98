"""Decides whether the certificate is due for renewal."""
import dataclasses
import datetime
import logging
import os
from typing import Optional

from zmssl import crypto_util
from zmssl import errors
from zmssl._internal.configuration import CertificateBundle
from zmssl._internal.configuration import RenewalPolicy
from zmssl._internal.platform import PlatformVariant

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Evaluation:
    """Outcome of a renewal check.

    :ivar bool due: True if the certificate should be renewed now
    :ivar int days_remaining: whole days left on the evaluated certificate,
        None when renewal was forced without looking
    :ivar str cert_path: certificate whose expiry was evaluated
    :ivar bool drift: True if the deployed certificate differs from the
        locally issued one

    """
    due: bool
    days_remaining: Optional[int]
    cert_path: Optional[str]
    drift: bool = False


def select_certificate(bundle: CertificateBundle, variant: PlatformVariant) -> tuple:
    """Pick the certificate whose expiry decides renewal.

    The certificate installed in the commercial slot is what clients see,
    so it is preferred. When its bytes differ from the locally issued
    certificate, or the installed chain differs from the staged chain
    bundle, the installation has drifted from the newest material: a
    warning is logged and the locally issued certificate is evaluated
    instead, since a deploy would install it.

    :returns: path of the certificate to evaluate and whether drift was found
    :rtype: tuple

    :raises errors.MissingCertificateError: if neither certificate exists

    """
    deployed = variant.commercial_cert
    local = bundle.cert_path
    if not os.path.isfile(deployed):
        if not os.path.isfile(local):
            raise errors.MissingCertificateError(
                "No certificate found: neither {0} nor {1} exists".format(deployed, local))
        logger.debug("No certificate deployed in %s yet, using %s", deployed, local)
        return local, False
    if not os.path.isfile(local):
        return deployed, False

    drift = not crypto_util.same_content(deployed, local)
    if not drift and os.path.isfile(variant.staged_chain_bundle):
        drift = not crypto_util.same_content(variant.commercial_ca, variant.staged_chain_bundle)
    if drift:
        logger.warning("The deployed certificate %s differs from the issued certificate %s; "
                       "checking the expiry of the issued one. Run deploy to install it.",
                       deployed, local)
        return local, True
    return deployed, False


def evaluate(bundle: CertificateBundle, variant: PlatformVariant, policy: RenewalPolicy,
             now: Optional[datetime.datetime] = None) -> Evaluation:
    """Is renewal due under policy?

    Due when at most ``policy.threshold_days`` whole days are left.
    ``policy.force_acquire`` makes renewal due without reading anything.

    :raises errors.MissingCertificateError: if no certificate exists yet

    """
    if policy.force_acquire:
        logger.debug("Renewal forced, expiry not checked")
        return Evaluation(due=True, days_remaining=None, cert_path=None)
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    cert_path, drift = select_certificate(bundle, variant)
    remaining = crypto_util.days_remaining(cert_path, now)
    due = remaining <= policy.threshold_days
    logger.debug("Certificate %s expires in %d days, threshold %d days: %s",
                 cert_path, remaining, policy.threshold_days, "due" if due else "not due")
    return Evaluation(due=due, days_remaining=remaining, cert_path=cert_path, drift=drift)


def is_renewal_due(bundle: CertificateBundle, variant: PlatformVariant,
                   policy: RenewalPolicy, now: Optional[datetime.datetime] = None) -> bool:
    """Shorthand for ``evaluate(...).due``."""
    return evaluate(bundle, variant, policy, now).due
