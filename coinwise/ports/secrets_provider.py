"""SecretsProvider Port Interface.

Contract: Retrieve secret material by logical name; no persistence here.
"""

from __future__ import annotations

from typing import Optional, Protocol


class SecretsProvider(Protocol):
    def get(self, secret_name: str) -> str: ...

    def get_optional(self, secret_name: str) -> Optional[str]: ...
