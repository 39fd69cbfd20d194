"""GitHub token resolution for the Gist store, with gh CLI fallback.

Resolution order (stops at first success):
  1. ``gist_token`` from the loaded config (filled from PRLEDGER_GIST_TOKEN,
     a PAT with `gist` scope; the Actions-provided GITHUB_TOKEN cannot write
     Gists)
  2. GITHUB_TOKEN environment variable
  3. `gh auth token` (GitHub CLI session, works after `gh auth login`)
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)

_TOKEN_ENV_VARS = ("PRLEDGER_GIST_TOKEN", "GITHUB_TOKEN")


def _gh_cli_token() -> str | None:
    try:
        proc = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, timeout=5)
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if proc.returncode != 0:
        logger.debug("gh auth token exited with %d; no CLI session.", proc.returncode)
        return None
    return proc.stdout.strip() or None


def resolve_gist_token(config: dict | None = None) -> str | None:
    """Return a GitHub token for GistStore, or None if no source has one.

    Never raises. Callers should check for None and fall back or emit a UsageError.
    """
    token = (config or {}).get("gist_token")
    if token:
        return token

    for name in _TOKEN_ENV_VARS:
        token = os.environ.get(name)
        if token:
            logger.debug("Resolved Gist token from %s.", name)
            return token

    token = _gh_cli_token()
    if token:
        logger.debug("Resolved Gist token via gh CLI session.")
    return token
