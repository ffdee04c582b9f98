"""Builds the chain bundle the platform serves after its certificate.

Let's Encrypt hands out the intermediate only, while the platform's
certificate manager and some older clients need the full path up to the
root. The root is picked from the intermediate's Common Name, downloaded
and appended to the issued chain.

"""
import logging
import os
import tempfile
from typing import Optional

import requests

from zmssl import crypto_util
from zmssl import errors
from zmssl._internal import constants
from zmssl._internal.platform import PlatformVariant

logger = logging.getLogger(__name__)


def root_url_for(common_name: str) -> str:
    """Download location of the root above the intermediate named common_name.

    Production intermediates are named after their key type and a number
    ("R10", "E6"); staging ones carry a "(STAGING)" prefix and end in such
    an identifier ("(STAGING) Ersatz Edamame E1").

    :raises errors.ChainError: if the name matches no known hierarchy

    """
    name = common_name.strip()
    staging = name.upper().startswith(constants.STAGING_CN_MARKER)
    if staging:
        tokens = name[len(constants.STAGING_CN_MARKER):].split()
        identifier = tokens[-1] if tokens else ""
    else:
        identifier = name
    key_type = identifier[:1].upper()
    try:
        return constants.ROOT_CERT_URLS[(staging, key_type)]
    except KeyError:
        raise errors.ChainError(
            "No known root certificate for intermediate {0!r}".format(common_name))


def download_root(url: str, session: Optional[requests.Session] = None) -> str:
    """Fetch a PEM root certificate.

    :raises errors.ChainError: if the download fails or is not a certificate

    """
    getter = session if session is not None else requests
    logger.info("Downloading root certificate from %s", url)
    try:
        response = getter.get(url, timeout=constants.DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.exceptions.RequestException as error:
        raise errors.ChainError("Unable to download {0}: {1}".format(url, error))
    pem = response.text
    if not crypto_util.CERT_PEM_REGEX.search(pem.encode()):
        raise errors.ChainError("{0} did not return a PEM certificate".format(url))
    return pem


def is_current(chain_path: str, bundle_path: str) -> bool:
    """Is the chain bundle at least as new as the issued chain?"""
    try:
        return os.path.getmtime(bundle_path) >= os.path.getmtime(chain_path)
    except OSError:
        return False


def build(chain_path: str, variant: PlatformVariant,
          session: Optional[requests.Session] = None) -> str:
    """Write issued chain plus matching root to the staged chain bundle.

    The bundle is replaced atomically and owned by the service account.

    :param str chain_path: issued intermediate chain
    :param PlatformVariant variant: platform whose staging area receives it

    :returns: path of the written bundle
    :rtype: str

    :raises errors.MissingCertificateError: if chain_path does not exist
    :raises errors.ChainError: if the root cannot be determined or fetched,
        or the bundle cannot be written

    """
    try:
        common_name = crypto_util.subject_common_name(chain_path)
    except errors.MissingCertificateError:
        raise
    except errors.Error as error:
        raise errors.ChainError(str(error))
    logger.debug("Issued chain %s is for intermediate %r", chain_path, common_name)
    root_pem = download_root(root_url_for(common_name), session)

    with open(chain_path) as chain_file:
        chain_pem = chain_file.read()
    if not chain_pem.endswith("\n"):
        chain_pem += "\n"

    bundle_path = variant.staged_chain_bundle
    try:
        os.makedirs(variant.staging_dir, 0o755, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=variant.staging_dir, prefix=".chain-bundle.")
        try:
            with os.fdopen(fd, "w") as bundle_file:
                bundle_file.write(chain_pem + root_pem)
            os.chmod(temp_path, 0o644)
            account = variant.account()
            os.chown(temp_path, account.pw_uid, account.pw_gid)
            os.replace(temp_path, bundle_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise
    except (OSError, errors.PlatformError) as error:
        raise errors.ChainError("Unable to write {0}: {1}".format(bundle_path, error))
    logger.info("Wrote chain bundle %s", bundle_path)
    return bundle_path
