"""acmeflow constants."""
import logging
import os
from typing import Any
from typing import Dict

from acmeflow import challenges

LETSENCRYPT_SERVER = "https://acme-v02.api.letsencrypt.org/directory"
"""Production Let's Encrypt directory."""

STAGING_URI = "https://acme-staging-v02.api.letsencrypt.org/directory"
"""Staging Let's Encrypt directory."""

CLI_DEFAULTS: Dict[str, Any] = dict(  # noqa
    config_files=[
        "/etc/acmeflow/cli.ini",
        os.path.join(os.environ.get("XDG_CONFIG_HOME", "~/.config"),
                     "acmeflow", "cli.ini"),
    ],

    verbose_count=0,
    quiet=False,
    log_file=None,
    max_log_backups=10,

    domains=[],
    webroot_path=None,
    config_dir="/etc/acmeflow",
    server=LETSENCRYPT_SERVER,
    staging=False,
    email=None,
    contact=[],
    no_verify_ssl=False,
    user_agent=None,
    network_timeout=45,

    challenge_type=challenges.HTTP01.typ,
    self_check=True,
    self_check_timeout=30,

    key_type="rsa",
    rsa_key_size=4096,
    elliptic_curve="secp256r1",
    reuse_key=True,
    new_key=False,
    reuse_csr=False,
    country=None,
    state=None,
    organization=None,

    poll_interval=1,
    max_poll_attempts=30,
    issuance_poll_attempts=30,
    max_nonce_retries=1,
)
"""Defaults for CLI flags and `.NamespaceConfig` attributes."""

ENV_VAR_PREFIX = "ACMEFLOW_"
"""Prefix of the environment variables read by the CLI."""

QUIET_LOGGING_LEVEL = logging.ERROR
"""Logging level to use in quiet mode."""

DEFAULT_LOGGING_LEVEL = logging.WARNING
"""Default logging level of the terminal output."""
