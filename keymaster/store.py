"""Vault access through hvac.

The rest of keymaster only needs four calls from the store: read a path,
write a path, delete a path, and issue a certificate. ``VaultStore`` provides
them on top of an ``hvac.Client`` and turns every failure into a
``BackendError`` naming the operation and path.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

import hvac
import hvac.exceptions
import requests

from .errors import BackendError, KeymasterError


class Store(Protocol):
    def read(self, path: str) -> Optional[Dict[str, Any]]:
        ...

    def write(self, path: str, data: Dict[str, Any]) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def issue_cert(
        self,
        mount: str,
        role: str,
        common_name: str,
        alt_names: List[str],
        ip_sans: List[str],
        ttl: str,
    ) -> Dict[str, Any]:
        ...


def _unwrap(response: Any) -> Any:
    """Extract the 'data' payload from an hvac API response.

    hvac returns the full Vault response envelope::

        {"request_id": "...", "lease_id": "", "data": { ... }, ...}

    Some calls (and older hvac versions) return just the inner dict.  This
    normalises both shapes.
    """
    if isinstance(response, dict) and "data" in response and isinstance(response["data"], dict):
        return response["data"]
    return response


_TRANSPORT_ERRORS = (hvac.exceptions.VaultError, requests.exceptions.RequestException)


class VaultStore:
    """The store contract over a live hvac client."""

    def __init__(self, client: hvac.Client):
        self.client = client

    def read(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the ``data`` section at ``path``, or None if nothing is there."""
        try:
            response = self.client.read(path)
        except _TRANSPORT_ERRORS as e:
            raise BackendError(f"failed to read {path}", "read", path) from e
        if not response:
            return None
        data = _unwrap(response)
        return data if isinstance(data, dict) else None

    def write(self, path: str, data: Dict[str, Any]) -> None:
        try:
            self.client.write_data(path, data=data)
        except _TRANSPORT_ERRORS as e:
            raise BackendError(f"failed to write {path}", "write", path) from e

    def delete(self, path: str) -> None:
        try:
            self.client.delete(path)
        except _TRANSPORT_ERRORS as e:
            raise BackendError(f"failed to delete {path}", "delete", path) from e

    def issue_cert(
        self,
        mount: str,
        role: str,
        common_name: str,
        alt_names: List[str],
        ip_sans: List[str],
        ttl: str,
    ) -> Dict[str, Any]:
        path = f"{mount}/issue/{role}"
        payload: Dict[str, Any] = {"common_name": common_name, "ttl": ttl}
        if alt_names:
            payload["alt_names"] = ",".join(alt_names)
        if ip_sans:
            payload["ip_sans"] = ",".join(ip_sans)
        try:
            response = self.client.write_data(path, data=payload)
        except _TRANSPORT_ERRORS as e:
            raise BackendError(f"failed to create certificate for {common_name}", "issue", path) from e
        bundle = _unwrap(response)
        if not isinstance(bundle, dict) or not bundle:
            raise BackendError(f"failed to get certificate from vault for {common_name}", "issue", path)
        return bundle


def connect(addr: str, token: str, verify: Any = True) -> VaultStore:
    """Build an authenticated ``VaultStore`` or raise ``KeymasterError``."""
    if not addr:
        raise KeymasterError("vault address is required (--address, VAULT_ADDR or vault.addr)")
    if not token:
        raise KeymasterError("vault token is required (--token or VAULT_TOKEN)")
    client = hvac.Client(url=addr, token=token, verify=verify)
    try:
        authenticated = client.is_authenticated()
    except _TRANSPORT_ERRORS as e:
        raise BackendError(f"cannot reach vault at {addr}", "connect", addr) from e
    if not authenticated:
        raise KeymasterError("Vault authentication failed (check vault addr/token).")
    return VaultStore(client)
