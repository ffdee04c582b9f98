"""zmssl command line argument parsing."""
import argparse
import copy
from typing import Any
from typing import List

import configargparse

import zmssl
from zmssl._internal import constants

SHORT_USAGE = """
  zmssl [action] [options]

Obtain, deploy and renew a Let's Encrypt certificate for Zimbra or Carbonio.
The ACME client answers HTTP-01 challenges on port 80, stopping the
platform proxy for the duration if it holds the port.
"""

ACTIONS_HELP = """actions:
  run           obtain, build the chain, verify, deploy and restart services
  cron          like run, but only once the deployed certificate is due
  get-cert      obtain the certificate and build its chain
  copy-cert     copy the issued certificate and key to the staging directory
  build-chain   download the matching root and write chain-bundle.pem
  verify-cert   verify the staged certificate, key and chain bundle
  deploy        verify and deploy the staged material
  check-expiry  exit 0 if the certificate is due for renewal, 1 otherwise

Set ZMSSL_STAGING to any value to use the ACME staging server.
"""


def flag_default(name: str) -> Any:
    """Default value for CLI flag."""
    return copy.deepcopy(constants.CLI_DEFAULTS[name])


def _days_type(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("must be a whole number of days")


def make_parser() -> configargparse.ArgParser:
    """Build the argument parser.

    Every long option can also be set in one of the config files.

    """
    parser = configargparse.ArgParser(
        prog="zmssl",
        usage=SHORT_USAGE,
        epilog=ACTIONS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        default_config_files=flag_default("config_files"),
        args_for_setting_config_path=["--config"],
        config_arg_help_message="path to config file (default: {0})".format(
            " and ".join(flag_default("config_files"))))

    parser.add_argument("action", nargs="*", metavar="ACTION",
                        help="one of: {0}".format(", ".join(constants.ACTIONS)))
    parser.add_argument("--version", action="version",
                        version="%(prog)s {0}".format(zmssl.__version__))

    cert = parser.add_argument_group("certificate")
    cert.add_argument("-d", "--domain", dest="domains", metavar="DOMAIN",
                      action="append", default=flag_default("domains"),
                      help="Domain to include in the certificate. The first one is "
                           "the subject, all of them are alternative names. May be "
                           "repeated or comma separated.")
    cert.add_argument("-n", "--name", dest="certname", default=flag_default("certname"),
                      help="Certificate name used by the ACME client (default: "
                           "the platform name)")
    cert.add_argument("-c", "--cert", dest="cert_path", default=flag_default("cert_path"),
                      help="Issued certificate file to use instead of the ACME "
                           "client's live directory")
    cert.add_argument("-C", "--chain", dest="chain_path", default=flag_default("chain_path"),
                      help="Issued intermediate chain file")
    cert.add_argument("-p", "--priv", dest="key_path", default=flag_default("key_path"),
                      help="Private key file")
    cert.add_argument("-e", "--email", default=flag_default("email"),
                      help="Contact address for the ACME account")
    cert.add_argument("--preferred-chain", default=flag_default("preferred_chain"),
                      help="Ask the ACME client for the chain issued by this root name")
    cert.add_argument("--http-port", dest="http01_port", type=int,
                      default=flag_default("http01_port"),
                      help="Port the HTTP-01 challenge is answered on (default: 80)")

    renewal = parser.add_argument_group("renewal")
    renewal.add_argument("-w", "--days", type=_days_type, default=flag_default("days"),
                         help="Renew when this many days or fewer are left, "
                              "1 to 30 (default: 30)")
    renewal.add_argument("--force-getcert", action="store_true",
                         default=flag_default("force_getcert"),
                         help="Obtain a new certificate even if not due")
    renewal.add_argument("--force-getchain", action="store_true",
                         default=flag_default("force_getchain"),
                         help="Rebuild chain-bundle.pem even if it is current")
    renewal.add_argument("--force-copy", action="store_true",
                         default=flag_default("force_copy"),
                         help="Overwrite already staged certificate files")
    renewal.add_argument("--noconfirm", action="store_true",
                         default=flag_default("noconfirm"),
                         help="Do not ask before deploying or restarting")
    renewal.add_argument("--norestart", action="store_true",
                         default=flag_default("norestart"),
                         help="Do not restart services after deploying")

    output = parser.add_argument_group("output")
    output.add_argument("-v", "--verbose", dest="verbose_count", action="count",
                        default=flag_default("verbose_count"),
                        help="More verbose terminal output, may be repeated")
    output.add_argument("-q", "--quiet", action="store_true", default=flag_default("quiet"),
                        help="Only print errors")
    output.add_argument("--debug", action="store_true", default=flag_default("debug"),
                        help="Show tracebacks of unexpected errors")
    output.add_argument("--logs-dir", default=flag_default("logs_dir"),
                        help="Directory for the debug log and tool output")
    output.add_argument("--max-log-backups", type=int,
                        default=flag_default("max_log_backups"),
                        help="Number of rotated debug logs to keep")
    output.add_argument("--lock-path", default=flag_default("lock_path"),
                        help="Lock file preventing concurrent runs")
    return parser


def prepare_and_parse_args(args: List[str]) -> argparse.Namespace:
    """Parse the command line and config files.

    Validation beyond types is left to
    `zmssl._internal.configuration.resolve`.

    """
    return make_parser().parse_args(args)
