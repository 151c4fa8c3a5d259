"""
OIDC provider config loader.

Loads provider configs from YAML with support for:
- well-known issuers (Google, eBay, SalesForce, Microsoft), so only credentials are needed
- custom OIDC providers via `issuer`
- env var expansion ${VAR_NAME}

Example:

    providers:
      Google:
        enabled: true
        client_id: ${GOOGLE_CLIENT_ID}
        client_secret: ${GOOGLE_CLIENT_SECRET}
        scopes: [profile]
      Corp:
        enabled: true
        issuer: https://sso.example.com/realms/corp
        client_id: portal
        client_secret: ${CORP_SECRET}
        token_auth_method: client_secret_post
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger

LOG_PREFIX = "[OAuthConfig]"


@dataclass
class ProviderConfig:
    """Single provider entry from the config file."""

    name: str
    client_id: str
    client_secret: str = field(repr=False)
    issuer: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    tenant: Optional[str] = None
    token_auth_method: str = "client_secret_basic"


class OAuthConfigLoader:
    """Provider config loader."""

    def __init__(self, config_path: Union[str, Path]):
        self.config_path = Path(config_path)
        self._providers: List[ProviderConfig] = []
        self._loaded: bool = False

    def load(self, force_reload: bool = False) -> List[ProviderConfig]:
        """
        Load the config file.

        A missing or empty file yields no providers. Disabled entries and entries
        without credentials are skipped with a log line.

        Raises:
            yaml.YAMLError: the file is not valid YAML
            ValueError: the file does not have the expected shape
        """
        if self._loaded and not force_reload:
            return list(self._providers)

        self._providers = []

        if not self.config_path.exists():
            logger.warning(f"{LOG_PREFIX} Config file not found: {self.config_path}")
            self._loaded = True
            return []

        with open(self.config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        if not raw:
            logger.warning(f"{LOG_PREFIX} Config file is empty: {self.config_path}")
            self._loaded = True
            return []

        providers_raw = raw.get("providers") if isinstance(raw, dict) else None
        if not isinstance(providers_raw, dict):
            raise ValueError(f"{self.config_path}: 'providers' must be a mapping")

        for name, config in providers_raw.items():
            config = config or {}
            if not config.get("enabled", True):
                logger.debug(f"{LOG_PREFIX} Provider '{name}' is disabled, skipping")
                continue
            provider = self._parse_provider(str(name), config)
            if provider:
                self._providers.append(provider)
                logger.info(f"{LOG_PREFIX} Loaded provider: {name}")

        self._loaded = True
        logger.info(f"{LOG_PREFIX} Loaded {len(self._providers)} OIDC providers")
        return list(self._providers)

    def _parse_provider(self, name: str, config: Dict[str, Any]) -> Optional[ProviderConfig]:
        config = self._expand_env_vars(config)

        client_id = str(config.get("client_id") or "").strip()
        client_secret = str(config.get("client_secret") or "").strip()
        if not client_id or not client_secret:
            logger.warning(f"{LOG_PREFIX} Provider '{name}' missing client_id or client_secret")
            return None

        scopes = config.get("scopes") or []
        if isinstance(scopes, str):
            scopes = scopes.split()

        return ProviderConfig(
            name=name,
            client_id=client_id,
            client_secret=client_secret,
            issuer=(config.get("issuer") or "").strip() or None,
            scopes=[str(s) for s in scopes],
            tenant=config.get("tenant"),
            token_auth_method=config.get("token_auth_method", "client_secret_basic"),
        )

    def _expand_env_vars(self, obj: Any) -> Any:
        """Recursively replace ${VAR_NAME} with env var values."""
        if isinstance(obj, str):
            return re.sub(r"\$\{(\w+)\}", lambda m: os.environ.get(m.group(1), ""), obj)
        elif isinstance(obj, dict):
            return {k: self._expand_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._expand_env_vars(i) for i in obj]
        return obj
