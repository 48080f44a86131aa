"""Conduit credential resolution with ~/.arcrc fallback.

Resolution order (stops at first success):
  1. PHABREPORT_CONDUIT_URI + PHABREPORT_CONDUIT_TOKEN environment variables
     (both must be set; CI / explicit override)
  2. The Arcanist credential file (``~/.arcrc`` by default), which anyone who
     has run ``arc install-certificate`` already has.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from phabreport_core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_ARCRC = "~/.arcrc"


@dataclass(frozen=True)
class Credentials:
    host: str
    token: str

    def __repr__(self) -> str:
        return f"Credentials(host={self.host!r}, token='***')"


def load_arcrc(path: str = DEFAULT_ARCRC, host: str | None = None) -> Credentials:
    """Read one (host, token) pair from an arcrc file.

    Picks ``host`` when given, otherwise the first host listed.
    """
    arcrc_path = Path(path).expanduser()
    if not arcrc_path.exists():
        raise ConfigError(f"Credential file not found: {arcrc_path}. Run `arc install-certificate` first.")

    try:
        data = json.loads(arcrc_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Could not read {arcrc_path}: {e}")

    hosts = data.get("hosts") if isinstance(data, dict) else None
    if not isinstance(hosts, dict) or not hosts:
        raise ConfigError(f"{arcrc_path} has no configured hosts.")

    if host is None:
        host = next(iter(hosts))
    elif host not in hosts:
        # arcrc keys conventionally end in "/api/"; accept the bare URL too.
        matches = [h for h in hosts if h.rstrip("/") in (host.rstrip("/"), host.rstrip("/") + "/api")]
        if not matches:
            raise ConfigError(f"Host {host!r} is not configured in {arcrc_path}.")
        host = matches[0]

    entry = hosts[host]
    token = entry.get("token") if isinstance(entry, dict) else None
    if not token:
        raise ConfigError(f"No token for {host} in {arcrc_path}.")

    logger.debug("Resolved Conduit credentials for %s from %s", host, arcrc_path)
    return Credentials(host=host, token=token)


def resolve_credentials(arcrc_path: str = DEFAULT_ARCRC, host: str | None = None) -> Credentials:
    """Return Conduit credentials from the environment or the arcrc file.

    Raises ConfigError when neither source yields a usable pair.
    """
    env_uri = os.environ.get("PHABREPORT_CONDUIT_URI")
    env_token = os.environ.get("PHABREPORT_CONDUIT_TOKEN")
    if env_uri and env_token and (host is None or host.rstrip("/") == env_uri.rstrip("/")):
        logger.debug("Resolved Conduit credentials from environment.")
        return Credentials(host=env_uri, token=env_token)

    return load_arcrc(arcrc_path, host=host)
