"""Detection of the installed groupware platform and its file layout."""
import dataclasses
import logging
import os
import pwd
from typing import Iterable
from typing import Optional

from zmssl import errors
from zmssl import util
from zmssl._internal import constants

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class PlatformVariant:
    """Conventions of one installed mail platform.

    :ivar str name: variant name, also the default certificate name
    :ivar str root: installation directory
    :ivar str user: account owning the installation and its services

    """
    name: str
    root: str
    user: str

    def bin(self, program: str) -> str:
        """Absolute path of one of the platform's programs."""
        return os.path.join(self.root, "bin", program)

    @property
    def staging_dir(self) -> str:
        """Directory where acquired material is prepared for deployment."""
        return os.path.join(self.root, "ssl", "letsencrypt")

    @property
    def staged_cert(self) -> str:
        return os.path.join(self.staging_dir, constants.STAGED_CERT)

    @property
    def staged_key(self) -> str:
        return os.path.join(self.staging_dir, constants.STAGED_KEY)

    @property
    def staged_chain_bundle(self) -> str:
        return os.path.join(self.staging_dir, constants.STAGED_CHAIN_BUNDLE)

    @property
    def commercial_dir(self) -> str:
        """The platform's slot for a certificate not signed by itself."""
        return os.path.join(self.root, "ssl", "zimbra", "commercial")

    @property
    def commercial_cert(self) -> str:
        return os.path.join(self.commercial_dir, constants.COMMERCIAL_CERT)

    @property
    def commercial_key(self) -> str:
        return os.path.join(self.commercial_dir, constants.COMMERCIAL_KEY)

    @property
    def commercial_ca(self) -> str:
        return os.path.join(self.commercial_dir, constants.COMMERCIAL_CA)

    def account(self) -> pwd.struct_passwd:
        """Password database entry of the service account.

        :raises errors.PlatformError: if the account does not exist

        """
        try:
            return pwd.getpwnam(self.user)
        except KeyError:
            raise errors.PlatformError("{0} user {1} not found".format(self.name, self.user))

    def is_installed(self) -> bool:
        """Is the service controller present and executable?"""
        return util.is_exe(self.bin("zmcontrol"))


KNOWN_VARIANTS = (
    PlatformVariant(name="zimbra", root="/opt/zimbra", user="zimbra"),
    PlatformVariant(name="carbonio", root="/opt/zextras", user="zextras"),
)


def detect(candidates: Optional[Iterable[PlatformVariant]] = None) -> PlatformVariant:
    """Find the one installed platform variant.

    :param candidates: variants to probe, `KNOWN_VARIANTS` by default

    :returns: the installed variant
    :rtype: PlatformVariant

    :raises errors.PlatformError: if no variant or more than one is installed

    """
    if candidates is None:
        candidates = KNOWN_VARIANTS
    installed = [variant for variant in candidates if variant.is_installed()]
    if not installed:
        raise errors.PlatformError(
            "Unable to find an installed Zimbra or Carbonio; the platform "
            "identity cannot be determined.")
    if len(installed) > 1:
        raise errors.PlatformError(
            "Found more than one installed platform ({0}); the platform "
            "identity cannot be determined.".format(
                ", ".join(variant.root for variant in installed)))
    logger.debug("Detected platform %s in %s", installed[0].name, installed[0].root)
    return installed[0]
