"""Credential lookup for the reasoning service used by enrichment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderCredentials:
    provider: str
    api_key: str | None
    base_url: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


# provider -> (api key variable, base url variable)
_ENV_VARS: Mapping[str, tuple[str, str]] = {
    "openai": ("OPENAI_API_KEY", "OPENAI_BASE_URL"),
}


class ProviderRegistry:
    """Resolve credentials per provider name.

    Overrides passed to the constructor win over the environment, which keeps
    tests and one-off CLI runs independent of the process env. A missing key
    is not an error: callers check :attr:`ProviderCredentials.configured` and
    skip enrichment.
    """

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {name.lower(): dict(values) for name, values in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        name = provider.lower()
        override = self._overrides.get(name)
        if override is not None:
            return ProviderCredentials(
                provider=name,
                api_key=override.get("api_key") or None,
                base_url=override.get("base_url") or None,
            )
        if name not in _ENV_VARS:
            raise KeyError(f"Unknown reasoning provider '{provider}'")
        key_var, url_var = _ENV_VARS[name]
        return ProviderCredentials(
            provider=name,
            api_key=os.getenv(key_var) or None,
            base_url=os.getenv(url_var) or None,
        )
