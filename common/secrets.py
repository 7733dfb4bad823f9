import json
import os
from pathlib import Path
from typing import Any, Dict, Optional


class SecretsManager:
    """Credentials for the monitor and treasury services.

    Read once from the JSON file at ``SECRETS_PATH``; any key missing there
    is looked up in the environment (JSON-encoded for mappings). Known keys:

        API_TOKENS      principal -> static bearer token
        JWT_SECRET      HS256 key for signed principal tokens
        DISPATCH_TOKEN  bearer token the monitor presents to remote treasuries

    Tests swap the whole set with :meth:`set_override`.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path or os.getenv("SECRETS_PATH", "/var/run/secrets/treasury.json"))
        self._cache: Optional[Dict[str, Any]] = None

    def _file(self) -> Dict[str, Any]:
        if self._cache is None:
            try:
                self._cache = json.loads(self._path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                self._cache = {}
        return self._cache

    @staticmethod
    def _env(key: str) -> Any:
        raw = os.getenv(key)
        if raw and raw.lstrip()[:1] in ("{", "["):
            return json.loads(raw)
        return raw

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        value = self._file().get(key)
        if value is None:
            value = self._env(key)
        return default if value is None else value

    # typed accessors -------------------------------------------------------

    def api_tokens(self) -> Dict[str, str]:
        return dict(self.get("API_TOKENS", {}))

    def jwt_secret(self) -> Optional[str]:
        return self.get("JWT_SECRET")

    def dispatch_token(self) -> Optional[str]:
        return self.get("DISPATCH_TOKEN")

    # test helpers ----------------------------------------------------------

    def set_override(self, data: Dict[str, Any]) -> None:
        self._cache = dict(data)

    def update(self, data: Dict[str, Any]) -> None:
        merged = dict(self._file())
        merged.update(data)
        self._cache = merged


secrets = SecretsManager()


def get_secret(key: str, default: Optional[Any] = None) -> Any:
    return secrets.get(key, default)
