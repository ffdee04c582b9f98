"""zmssl constants."""
import logging
import os
from typing import Any
from typing import Dict

CLI_DEFAULTS: Dict[str, Any] = dict(  # noqa
    config_files=[
        "/etc/zmssl/cli.ini",
        os.path.join(os.environ.get("XDG_CONFIG_HOME", "~/.config"),
                     "zmssl", "cli.ini"),
    ],

    action=None,
    domains=[],
    cert_path=None,
    chain_path=None,
    key_path=None,
    certname=None,
    email=None,
    days=30,
    force_getcert=False,
    force_getchain=False,
    force_copy=False,
    noconfirm=False,
    norestart=False,
    preferred_chain=None,
    http01_port=80,

    verbose_count=0,
    quiet=False,
    debug=False,
    logs_dir="/var/log/zmssl",
    max_log_backups=1000,
    lock_path="/tmp/zmssl.lock",
)
"""Defaults for CLI flags and `.RunConfig` attributes."""

ACQUIRE_ACTIONS = ("run", "cron", "get-cert")
"""Actions that ask the ACME client for a certificate."""

ACTIONS = ACQUIRE_ACTIONS + (
    "deploy", "copy-cert", "check-expiry", "build-chain", "verify-cert")
"""Every action accepted on the command line."""

INTERACTIVE_ACTIONS = ("run", "deploy")
"""Actions that confirm with the operator before touching services."""

MAX_RENEWAL_DAYS = 30
"""Let's Encrypt lets a certificate be renewed at most this many days early."""

STAGING_ENV_VAR = "ZMSSL_STAGING"
"""Any non-empty value routes the ACME client to the staging server."""

ACME_CLIENT = "certbot"
"""Executable of the ACME client."""

LIVE_DIR = "/etc/letsencrypt/live"
"""Directory holding one subdirectory of current material per certificate name."""

LIVE_CERT = "cert.pem"
LIVE_KEY = "privkey.pem"
LIVE_CHAIN = "chain.pem"

STAGED_CERT = "cert.pem"
STAGED_KEY = "privkey.pem"
STAGED_CHAIN_BUNDLE = "chain-bundle.pem"

COMMERCIAL_CERT = "commercial.crt"
COMMERCIAL_KEY = "commercial.key"
COMMERCIAL_CA = "commercial_ca.crt"

NOT_DUE_MARKERS = (
    "not yet due for renewal",
    "cert not yet due",
)
"""Lower-cased fragments the ACME client prints when it skips a renewal.

This is an assumption about the client's console output, not a stable
interface; `zmssl._internal.tools.acquisition_not_due` is the only reader.

"""

STAGING_CN_MARKER = "(STAGING)"
"""Prefix Let's Encrypt puts on staging certificate Common Names."""

ROOT_CERT_URLS = {
    (False, "R"): "https://letsencrypt.org/certs/isrgrootx1.pem",
    (False, "E"): "https://letsencrypt.org/certs/isrg-root-x2.pem",
    (True, "R"): "https://letsencrypt.org/certs/staging/letsencrypt-stg-root-x1.pem",
    (True, "E"): "https://letsencrypt.org/certs/staging/letsencrypt-stg-root-x2.pem",
}
"""Root download URL keyed by (staging, intermediate key type letter)."""

DOWNLOAD_TIMEOUT = 30
"""Seconds before a root certificate download is abandoned."""

QUIET_LOGGING_LEVEL = logging.ERROR
"""Logging level to use in quiet mode."""

DEFAULT_LOGGING_LEVEL = logging.INFO
"""Default logging level to use when not in quiet mode."""

LOG_FILE = "zmssl.log"
"""Basename of the rotating debug log."""

EXIT_NOT_DUE = 1
"""Exit status of check-expiry when the certificate is outside the renewal window."""
