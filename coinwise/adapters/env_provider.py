"""
Environment-backed SecretsProvider.

Only allow-listed logical names resolve, each to one variable under the
prefix:

    firebase_api_key  -> COINWISE_SECRET_FIREBASE_API_KEY
    firebase_db_token -> COINWISE_SECRET_FIREBASE_DB_TOKEN

Values are never logged; the config loader skips the whole prefix.
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from coinwise.ports.secrets_provider import SecretsProvider

logger = logging.getLogger(__name__)

SECRET_PREFIX = "COINWISE_SECRET_"

DEFAULT_SECRETS: dict[str, str] = {
    "firebase_api_key": "FIREBASE_API_KEY",
    "firebase_db_token": "FIREBASE_DB_TOKEN",
}


class MissingSecretError(ValueError):
    def __init__(self, secret_name: str, env_var: Optional[str] = None) -> None:
        self.secret_name = secret_name
        self.env_var = env_var
        hint = f" (set {env_var})" if env_var else " (not an allowed secret name)"
        super().__init__(f"Secret '{secret_name}' is unavailable{hint}")


class EnvSecretsProvider(SecretsProvider):
    def __init__(
        self,
        prefix: str = SECRET_PREFIX,
        allowed: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not prefix:
            raise ValueError("Environment prefix must be a non-empty string")
        self._prefix = prefix
        self._allowed = {**DEFAULT_SECRETS, **(allowed or {})}
        self._environ = environ

    def env_var_for(self, secret_name: str) -> str:
        suffix = self._allowed.get(secret_name)
        if suffix is None:
            raise MissingSecretError(secret_name)
        return self._prefix + suffix

    def get(self, secret_name: str) -> str:
        env_var = self.env_var_for(secret_name)
        env = os.environ if self._environ is None else self._environ
        value = env.get(env_var)
        if value is None:
            raise MissingSecretError(secret_name, env_var)
        logger.debug(f"[secrets] resolved {secret_name} from environment")
        return value

    def get_optional(self, secret_name: str) -> Optional[str]:
        try:
            return self.get(secret_name)
        except MissingSecretError:
            return None
