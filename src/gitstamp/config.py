"""Configuration loading.

Values come from, in order of precedence: explicit overrides (CLI
options), the repository's git config (``timestamp.*`` keys), and the
defaults on :class:`gitstamp.models_timestamp.StampConfig`::

    git config timestamp.url   https://freetsa.org/tsr
    git config timestamp.cert  ~/.config/gitstamp/tsa.crt
    git config timestamp.delay 1
    git config timestamp.ref   refs/notes/timestamps
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from .errors import ConfigurationError
from .models_timestamp import StampConfig
from .repo import GitRepository

logger = logging.getLogger("gitstamp.config")

GIT_CONFIG_KEYS: dict[str, str] = {
    "tsa_url": "timestamp.url",
    "cert_path": "timestamp.cert",
    "delay_seconds": "timestamp.delay",
    "notes_ref": "timestamp.ref",
    "remote": "timestamp.remote",
}


def load_config(repo: Optional[GitRepository] = None, **overrides: Any) -> StampConfig:
    """Build the run configuration.

    Args:
        repo: Repository whose git config is consulted (skipped if None).
        **overrides: Field values that win over git config; None values
            are ignored.

    Returns:
        The frozen :class:`StampConfig`.

    Raises:
        ConfigurationError: If a value fails validation.
    """
    values: dict[str, Any] = {}
    if repo is not None:
        for field, key in GIT_CONFIG_KEYS.items():
            value = repo.config_get(key)
            if value:
                logger.debug("Using %s=%s from git config", key, value)
                values[field] = value

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return StampConfig(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ConfigurationError(problems) from exc
