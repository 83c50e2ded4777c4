from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

import requests


def _debug(msg: str) -> None:
    print(f"[checkout] {msg}")


class ScriptLoadError(RuntimeError):
    pass


def _download(url: str, timeout: float) -> bytes:
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ScriptLoadError(f"script_fetch_failed: {type(e).__name__}") from e
    if r.status_code != 200 or not r.content:
        raise ScriptLoadError(f"script_fetch_status: {r.status_code}")
    return r.content


class GatewayScriptLoader:
    """Load-once latch for the gateway's checkout script.

    Concurrent callers share a single load. A failed load leaves the latch open
    so it can be retried; a successful one is reused for the life of the process.
    """

    def __init__(
        self,
        url: str,
        *,
        fetch: Optional[Callable[[str, float], bytes]] = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self.timeout = timeout
        self._fetch = fetch or _download
        self._lock = threading.Lock()
        self._loaded = threading.Event()
        self._script: bytes | None = None

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    @property
    def script(self) -> bytes | None:
        return self._script

    def ensure_loaded(self) -> None:
        if self._loaded.is_set():
            return
        with self._lock:
            if self._loaded.is_set():
                return
            _debug(f"loading gateway script {self.url}")
            try:
                self._script = self._fetch(self.url, self.timeout)
            except ScriptLoadError:
                raise
            except Exception as e:
                raise ScriptLoadError(f"script_fetch_failed: {type(e).__name__}: {e}") from e
            self._loaded.set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._loaded.wait(timeout)


_loaders: Dict[str, GatewayScriptLoader] = {}
_loaders_lock = threading.Lock()


def get_script_loader(url: str) -> GatewayScriptLoader:
    """Process-wide loader for `url`; every orchestrator shares it."""
    with _loaders_lock:
        loader = _loaders.get(url)
        if loader is None:
            loader = GatewayScriptLoader(url)
            _loaders[url] = loader
        return loader
