"""
Byte sources the reload supervisor can fetch configuration from.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import httpx

from shared.errors import ConfigFetchError
from ..loader import FORMAT_JSON, FORMAT_YAML, detect_format


class ConfigSource(ABC):
    """Anything that can hand back raw configuration bytes."""

    format: str = FORMAT_JSON

    @abstractmethod
    def fetch_config(self) -> bytes:
        """Return the current configuration bytes or raise ConfigFetchError."""

    def close(self) -> None:
        pass

    @property
    def name(self) -> str:
        return type(self).__name__


class FileConfigSource(ConfigSource):
    """Configuration file on local disk; format follows the extension."""

    def __init__(self, path: Union[str, Path], fmt: Optional[str] = None):
        self.path = Path(path)
        self.format = fmt or detect_format(str(self.path))

    @property
    def name(self) -> str:
        return f"file:{self.path}"

    def fetch_config(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise ConfigFetchError(self.name, str(e)) from e


class HTTPConfigSource(ConfigSource):
    """Remote configuration service reached with a blocking GET."""

    def __init__(
        self,
        url: str,
        fmt: Optional[str] = None,
        timeout: float = 5.0,
        headers: Optional[dict] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.format = fmt or _format_from_url(url)
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    @property
    def name(self) -> str:
        return f"http:{self.url}"

    def fetch_config(self) -> bytes:
        try:
            response = self._client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ConfigFetchError(self.name, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ConfigFetchError(self.name, str(e) or type(e).__name__) from e
        return response.content

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class StaticConfigSource(ConfigSource):
    """In-memory configuration; ``update`` replaces what the next fetch returns."""

    def __init__(self, data: Union[bytes, str], fmt: str = FORMAT_JSON):
        self.format = fmt
        self._data = _as_bytes(data)

    def update(self, data: Union[bytes, str]) -> None:
        self._data = _as_bytes(data)

    def fetch_config(self) -> bytes:
        return self._data


def _as_bytes(data: Union[bytes, str]) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _format_from_url(url: str) -> str:
    path = httpx.URL(url).path.lower()
    if path.endswith((".yaml", ".yml")):
        return FORMAT_YAML
    return FORMAT_JSON
