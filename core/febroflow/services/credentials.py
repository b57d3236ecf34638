"""
Credential resolution for nodes with a ``credential_id``.

Storage and encryption of credentials live elsewhere; the engine only needs
to turn an id into the secret fields a handler uses.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any

from febroflow.errors import FatalNodeError


class CredentialResolver(ABC):
    @abstractmethod
    async def resolve(self, credential_id: str) -> dict[str, Any]:
        """
        Return the credential's fields.

        Raises:
            FatalNodeError: unknown credential (retrying cannot help)
        """


class StaticCredentialResolver(CredentialResolver):
    """Credentials supplied up front, keyed by id."""

    def __init__(self, credentials: dict[str, dict[str, Any]] | None = None):
        self._credentials = dict(credentials or {})

    def add(self, credential_id: str, fields: dict[str, Any]) -> None:
        self._credentials[credential_id] = dict(fields)

    async def resolve(self, credential_id: str) -> dict[str, Any]:
        if credential_id not in self._credentials:
            raise FatalNodeError(f"Credential '{credential_id}' not found")
        return dict(self._credentials[credential_id])


class EnvCredentialResolver(CredentialResolver):
    """
    Credentials read from environment variables.

    ``FEBROFLOW_CREDENTIAL_<ID>`` holds either a JSON object of fields or a
    bare secret, which is exposed as ``{"token": value, "api_key": value}``.
    The id is upper-cased with dashes and dots turned into underscores.
    """

    def __init__(self, prefix: str = "FEBROFLOW_CREDENTIAL_"):
        self.prefix = prefix

    def env_var(self, credential_id: str) -> str:
        key = credential_id.upper().replace("-", "_").replace(".", "_")
        return f"{self.prefix}{key}"

    async def resolve(self, credential_id: str) -> dict[str, Any]:
        name = self.env_var(credential_id)
        raw = os.environ.get(name)
        if raw is None:
            raise FatalNodeError(f"Credential '{credential_id}' not found (set {name})")
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return {"token": raw, "api_key": raw}
        if isinstance(value, dict):
            return value
        return {"token": raw, "api_key": raw}
