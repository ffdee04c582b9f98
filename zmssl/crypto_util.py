"""zmssl certificate inspection helpers.

Verification of key/certificate/chain coherence is left to the
platform's own certificate manager; these helpers only read the fields
the renewal policy and the chain builder need.

"""
import datetime
import logging
import re

from cryptography import x509
from cryptography.x509.oid import NameOID

from zmssl import errors

logger = logging.getLogger(__name__)

# Finds one CERTIFICATE stricttextualmsg according to rfc7468#section-3.
# Does not validate the base64text - use x509.load_pem_x509_certificate.
CERT_PEM_REGEX = re.compile(
    b"""-----BEGIN CERTIFICATE-----\r?
.+?\r?
-----END CERTIFICATE-----\r?
""",
    re.DOTALL  # DOTALL (/s) because the base64text may include newlines
)


def load_first_cert(pem_path: str) -> x509.Certificate:
    """Load the first certificate found in a PEM file.

    :param str pem_path: path to a certificate or chain in PEM format

    :returns: the first certificate of the file
    :rtype: `cryptography.x509.Certificate`

    :raises errors.MissingCertificateError: if the file does not exist
    :raises errors.Error: if the file holds no parsable certificate

    """
    try:
        with open(pem_path, "rb") as f:
            data = f.read()
    except FileNotFoundError:
        raise errors.MissingCertificateError(
            "Certificate file {0} does not exist".format(pem_path))
    certs = CERT_PEM_REGEX.findall(data)
    if not certs:
        raise errors.Error("No PEM certificate found in {0}".format(pem_path))
    try:
        return x509.load_pem_x509_certificate(certs[0])
    except ValueError as error:
        raise errors.Error("Unable to parse certificate in {0}: {1}".format(pem_path, error))


def notAfter(cert_path: str) -> datetime.datetime:
    """When does the cert at cert_path stop being valid?

    :param str cert_path: path to a cert in PEM format

    :returns: the notAfter value from the cert at cert_path
    :rtype: :class:`datetime.datetime`

    """
    return load_first_cert(cert_path).not_valid_after_utc


def subject_common_name(cert_path: str) -> str:
    """Subject Common Name of the first certificate in cert_path.

    :raises errors.Error: if the subject carries no Common Name

    """
    attributes = load_first_cert(cert_path).subject.get_attributes_for_oid(
        NameOID.COMMON_NAME)
    if not attributes:
        raise errors.Error("Certificate in {0} has no subject Common Name".format(cert_path))
    return str(attributes[0].value)


def days_remaining(cert_path: str, now: datetime.datetime) -> int:
    """Whole days left before the cert at cert_path expires.

    Negative once the certificate has expired.

    :param datetime.datetime now: timezone aware reference time

    """
    delta = notAfter(cert_path) - now
    return int(delta.total_seconds() // 86400)


def same_content(*paths: str) -> bool:
    """Do all the given files exist and hold identical bytes?"""
    contents = set()
    for path in paths:
        try:
            with open(path, "rb") as f:
                contents.add(f.read())
        except FileNotFoundError:
            return False
    return len(contents) <= 1
