"""Build authorized HTTP sessions for the Google workspace APIs.

Credential acquisition is delegated to google-auth: service-account keys
(file or JSON held in an environment variable) or an OAuth client with a
refresh token. Tokens are fetched and refreshed lazily by the session on
the first request, so no network I/O happens here.
"""

from __future__ import annotations

import json
import os
from typing import Any, Iterable, List

from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials as UserCredentials

from .config import CredentialsConfig, TriggerConfigError

TOKEN_URI = "https://oauth2.googleapis.com/token"


def load_credentials(config: CredentialsConfig, scopes: Iterable[str]) -> Any:
    """Create google-auth credentials from the trigger configuration.

    Args:
        config: Credentials section of the trigger.
        scopes: Provider default scopes, used when the trigger sets none.

    Raises:
        TriggerConfigError: If the key material is missing or unreadable.
    """
    resolved_scopes: List[str] = list(config.scopes or scopes)

    if config.service_account_file:
        try:
            return service_account.Credentials.from_service_account_file(
                os.path.expanduser(config.service_account_file),
                scopes=resolved_scopes,
            )
        except (OSError, ValueError) as exc:
            raise TriggerConfigError(f"Failed to load service account key: {exc}") from exc

    if config.service_account_env:
        raw = os.environ.get(config.service_account_env)
        if not raw:
            raise TriggerConfigError(
                f"Environment variable '{config.service_account_env}' with the service account key is not set"
            )
        try:
            info = json.loads(raw)
            return service_account.Credentials.from_service_account_info(info, scopes=resolved_scopes)
        except ValueError as exc:
            raise TriggerConfigError(f"Invalid service account key in '{config.service_account_env}': {exc}") from exc

    return UserCredentials(
        token=None,
        refresh_token=config.refresh_token,
        token_uri=TOKEN_URI,
        client_id=config.client_id,
        client_secret=config.client_secret,
        scopes=resolved_scopes,
    )


def build_session(config: CredentialsConfig, scopes: Iterable[str]) -> AuthorizedSession:
    """Return a requests session that attaches and refreshes access tokens."""
    return AuthorizedSession(load_credentials(config, scopes))
