"""acmeflow command line argument parsing."""
import argparse
import copy
from typing import Any
from typing import List
from typing import Optional
from typing import Sequence
from typing import Union

import configargparse

from acmeflow import __version__
from acmeflow import configuration
from acmeflow import constants
from acmeflow import errors

SHORT_USAGE = """
  acmeflow -d example.com [-d www.example.com] -w /var/www/html [options]

Obtains a certificate from an ACME server, proving control of the domains
with http-01 challenges served from the web root.
"""


def flag_default(name: str) -> Any:
    """Default value for CLI flag."""
    return copy.deepcopy(constants.CLI_DEFAULTS[name])


class _DomainsAction(argparse.Action):
    """Action class for parsing domains."""

    def __call__(self, parser: argparse.ArgumentParser, namespace: argparse.Namespace,
                 domain: Union[str, Sequence[Any], None],
                 option_string: Optional[str] = None) -> None:
        """Just wrap add_domains in argparseese."""
        add_domains(namespace, str(domain))


def add_domains(args_or_config: argparse.Namespace, domains: str) -> List[str]:
    """Registers new domains to be used during the current client run.

    Domains are not added to the list of requested domains if they have
    already been registered.

    :param args_or_config: parsed command line arguments
    :param str domains: one or more comma separated domains

    :returns: the domains that were given, normalized
    :rtype: `list` of `str`

    """
    validated_domains = []
    for domain in domains.split(","):
        domain = domain.strip().lower().rstrip('.')
        if not domain:
            continue
        validated_domains.append(domain)
        if domain not in args_or_config.domains:
            args_or_config.domains.append(domain)
    return validated_domains


def positive_int(value: str) -> int:
    """Converts value to an int and checks that it is positive.

    :raises argparse.ArgumentTypeError: if value isn't a positive integer

    """
    try:
        int_value = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("value must be an integer")
    if int_value < 1:
        raise argparse.ArgumentTypeError("value must be positive")
    return int_value


def nonnegative_float(value: str) -> float:
    """Converts value to a float and checks that it is not negative."""
    try:
        float_value = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError("value must be a number")
    if float_value < 0:
        raise argparse.ArgumentTypeError("value must be non-negative")
    return float_value


def build_parser() -> configargparse.ArgParser:
    """Parser of the ``acmeflow`` command.

    Every long option can also be set in a config file or through an
    ``ACMEFLOW_<OPTION>`` environment variable.

    """
    parser = configargparse.ArgParser(
        prog="acmeflow",
        usage=SHORT_USAGE,
        args_for_setting_config_path=["-c", "--config"],
        default_config_files=flag_default("config_files"),
        auto_env_var_prefix=constants.ENV_VAR_PREFIX,
        config_arg_help_message="path to config file (default: {0})".format(
            " and ".join(flag_default("config_files"))))

    parser.add_argument("--version", action="version",
                        version="%(prog)s {0}".format(__version__))
    parser.add_argument(
        "-v", "--verbose", dest="verbose_count", action="count",
        default=flag_default("verbose_count"),
        help="This flag can be used multiple times to incrementally "
             "increase the verbosity of output, e.g. -vv.")
    parser.add_argument(
        "-q", "--quiet", dest="quiet", action="store_true",
        default=flag_default("quiet"),
        help="Silence all output except errors.")
    parser.add_argument(
        "--log-file", default=flag_default("log_file"),
        help="Also write a debug log to this file.")
    parser.add_argument(
        "--max-log-backups", type=positive_int,
        default=flag_default("max_log_backups"),
        help="Number of rotated log files to keep.")

    parser.add_argument(
        "-d", "--domains", "--domain", dest="domains",
        metavar="DOMAIN", action=_DomainsAction,
        default=flag_default("domains"),
        help="Domain names to include. The first one is the primary domain: "
             "its name is used for the CSR subject and the storage directory. "
             "Use multiple -d flags or enter a comma separated list.")
    parser.add_argument(
        "-w", "--webroot-path", default=flag_default("webroot_path"),
        help="Public directory of the web server serving the domains.")
    parser.add_argument(
        "--config-dir", default=flag_default("config_dir"),
        help="Directory holding keys, CSRs and certificates.")

    parser.add_argument(
        "--server", default=flag_default("server"),
        help="ACME directory URL (or the server base URL).")
    parser.add_argument(
        "--staging", "--test-cert", dest="staging", action="store_true",
        default=flag_default("staging"),
        help="Use the Let's Encrypt staging server.")
    parser.add_argument(
        "-m", "--email", default=flag_default("email"),
        help="Email address used for registration and recovery contact. "
             "Use comma to register multiple emails.")
    parser.add_argument(
        "--contact", action="append", default=flag_default("contact"),
        help="Additional contact URI sent on registration, e.g. tel:+1234.")
    parser.add_argument(
        "--no-verify-ssl", action="store_true",
        default=flag_default("no_verify_ssl"),
        help="Disable verification of the ACME server's certificate.")
    parser.add_argument(
        "--user-agent", default=flag_default("user_agent"),
        help="Set a custom user agent string.")
    parser.add_argument(
        "--network-timeout", type=positive_int,
        default=flag_default("network_timeout"),
        help="Timeout, in seconds, of every request to the ACME server.")

    parser.add_argument(
        "--key-type", choices=["rsa", "ecdsa"], default=flag_default("key_type"),
        help="Type of generated private keys.")
    parser.add_argument(
        "--rsa-key-size", type=int, metavar="N", default=flag_default("rsa_key_size"),
        help="Size of generated RSA keys.")
    parser.add_argument(
        "--elliptic-curve", metavar="N", default=flag_default("elliptic_curve"),
        help="Curve of generated ECDSA keys: secp256r1, secp384r1 or secp521r1.")
    parser.add_argument(
        "--new-key", action="store_true", default=flag_default("new_key"),
        help="Generate a new private key for the certificate even if one exists.")
    parser.add_argument(
        "--reuse-csr", action="store_true", default=flag_default("reuse_csr"),
        help="Submit the last CSR of the primary domain again if it covers "
             "the same domains.")
    parser.add_argument(
        "--country", default=flag_default("country"),
        help="CSR subject country code (C).")
    parser.add_argument(
        "--state", default=flag_default("state"),
        help="CSR subject state or province (ST).")
    parser.add_argument(
        "--organization", default=flag_default("organization"),
        help="CSR subject organization (O).")

    parser.add_argument(
        "--no-self-check", dest="self_check", action="store_false",
        default=flag_default("self_check"),
        help="Do not fetch the published challenge back before asking "
             "the server to validate it.")
    parser.add_argument(
        "--poll-interval", type=nonnegative_float,
        default=flag_default("poll_interval"),
        help="Seconds between two status checks.")
    parser.add_argument(
        "--max-poll-attempts", type=positive_int,
        default=flag_default("max_poll_attempts"),
        help="Status checks of a challenge before giving up.")
    parser.add_argument(
        "--issuance-poll-attempts", type=positive_int,
        default=flag_default("issuance_poll_attempts"),
        help="Status checks of an order or a certificate before giving up.")

    parser.set_defaults(
        challenge_type=flag_default("challenge_type"),
        self_check_timeout=flag_default("self_check_timeout"),
        reuse_key=flag_default("reuse_key"),
        max_nonce_retries=flag_default("max_nonce_retries"),
    )
    return parser


def prepare_and_parse_args(args: List[str]) -> configuration.NamespaceConfig:
    """Parse the command line and the config files.

    :param list args: command line arguments, without the program name

    :returns: parsed configuration
    :rtype: `.NamespaceConfig`

    """
    parser = build_parser()
    parsed_args = parser.parse_args(args)
    if not parsed_args.domains:
        parser.error("at least one domain is required (-d)")
    if not parsed_args.webroot_path:
        parser.error("a web root is required (-w)")
    try:
        return configuration.NamespaceConfig(parsed_args)
    except errors.ConfigurationError as error:
        parser.error(str(error))
        raise  # pragma: no cover
