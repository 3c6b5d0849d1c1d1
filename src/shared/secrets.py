"""
Secrets and keychain integration. Retrieves store credentials from the
system keychain.

Credentials are **never** stored in ``settings.toml``.  The settings file
only names the secret (``password_secret = "couchdb-password"``); the value
lives in the system keychain (``secret-tool`` / ``libsecret``) and is
retrieved at startup.
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger("shared.secrets")


def get_secret(key_name: str, service: str = "couchconfig") -> str:
    """Retrieve a secret from the system keychain.

    Uses ``secret-tool`` (libsecret) under the hood::

        secret-tool lookup service couchconfig key <key_name>

    Falls back to environment variables (``COUCHCONFIG_<KEY_NAME>``) if
    ``secret-tool`` is not available (e.g. in development environments
    and containers).

    Args:
        key_name: The key identifier (e.g. ``"couchdb-password"``).
        service: The service label in the keychain.

    Returns:
        The secret value as a string.

    Raises:
        RuntimeError: If the secret is not found in the keychain or env.
    """
    try:
        result = subprocess.run(
            ["secret-tool", "lookup", "service", service, "key", key_name],
            capture_output=True,
            text=True,
            timeout=10,
        )
        secret = result.stdout.strip()
        if secret:
            return secret
    except FileNotFoundError:
        logger.warning(
            "secret-tool not found; falling back to environment variable"
        )
    except subprocess.TimeoutExpired:
        logger.warning("secret-tool timed out; falling back to environment variable")

    env_key = f"COUCHCONFIG_{key_name.upper().replace('-', '_')}"
    env_val = os.environ.get(env_key)
    if env_val:
        logger.warning("Using env var fallback for secret '%s' (%s)", key_name, env_key)
        return env_val

    raise RuntimeError(
        f"Secret '{key_name}' not found in keychain (service={service}) "
        f"or environment variable {env_key}"
    )
