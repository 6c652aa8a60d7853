"""Shared fixtures: an in-memory stand-in for hvac.Client."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from keymaster.store import VaultStore


# ---------------------------------------------------------------------------
# Mock Vault client
# ---------------------------------------------------------------------------

class MockVaultClient:
    """Mock for hvac.Client covering the generic read/write_data/delete calls.

    Responses use the full Vault envelope (hvac >= 2.x style).  KV v2 reads
    wrap the stored document with metadata, ``sys/policy`` reads return the
    policy text under ``rules`` and ``<mount>/issue/<role>`` writes return
    a certificate bundle.
    """

    def __init__(self, state: Optional[dict] = None):
        self._state = state if state is not None else {
            "paths": {},   # path -> payload as written
            "writes": [],  # every write_data path, in order
            "issued": [],  # every issue request payload
        }
        self.authenticated = True

    def is_authenticated(self) -> bool:
        return self.authenticated

    def _envelope(self, data: Dict[str, Any]) -> dict:
        return {
            "request_id": "mock-req",
            "lease_id": "",
            "renewable": False,
            "lease_duration": 0,
            "data": data,
        }

    def read(self, path: str) -> Optional[dict]:
        paths = self._state["paths"]
        if path not in paths:
            return None
        stored = paths[path]
        if path.startswith("sys/policy/"):
            return self._envelope({"name": path.rsplit("/", 1)[-1], "rules": stored["policy"]})
        if "/data/" in path:
            return self._envelope({"data": stored.get("data"), "metadata": {"version": 1}})
        return self._envelope(dict(stored))

    def write_data(self, path: str, data: Optional[dict] = None, wrap_ttl: Any = None) -> Optional[dict]:
        data = data or {}
        self._state["writes"].append(path)
        if "/issue/" in path:
            self._state["issued"].append(dict(data, path=path))
            return self._envelope({
                "certificate": f"CERT({data['common_name']})",
                "issuing_ca": "CA",
                "ca_chain": ["CA"],
                "private_key": "KEY",
                "private_key_type": "rsa",
                "serial_number": "01:02",
                "expiration": 1700000000,
            })
        self._state["paths"][path] = data
        return None

    def delete(self, path: str) -> None:
        self._state["paths"].pop(path, None)

    # -- helpers for assertions -------------------------------------------
    def stored(self, path: str) -> Optional[dict]:
        return self._state["paths"].get(path)

    @property
    def writes(self) -> List[str]:
        return self._state["writes"]


@pytest.fixture
def client() -> MockVaultClient:
    return MockVaultClient()


@pytest.fixture
def store(client) -> VaultStore:
    return VaultStore(client)
