"""Write generated secret values into Vault, once.

A value is only generated for an environment whose path is empty.  Anything
already stored is left alone, whether keymaster wrote it or someone rotated it
by hand, and even if the manifest's generator has changed since.
"""
from __future__ import annotations

import base64
import json
from typing import Any, Dict, List

from .errors import GeneratorError
from .paths import secret_path
from .store import Store
from .team import Secret

NEVER_GENERATED = ("static",)
UNSUPPORTED = ("rsa",)


def generator_audit_record(spec: Dict[str, Any]) -> str:
    """Base64 of the JSON generator spec, stored beside every value."""
    raw = json.dumps(spec, sort_keys=True, default=str).encode()
    return base64.b64encode(raw).decode()


def _has_data(current: Any) -> bool:
    return isinstance(current, dict) and bool(current.get("data"))


class SecretProvisioner:
    def __init__(self, store: Store):
        self.store = store

    def provision(self, secret: Secret) -> List[str]:
        """Fill every empty environment of ``secret``.  Returns paths written."""
        written: List[str] = []
        for env in secret.environments:
            path = secret_path(secret.team, secret.name, env)
            current = self.store.read(path)
            if _has_data(current):
                print(f"[ok] secret exists: {path}")
                continue
            if self.write_for_env(secret, path):
                written.append(path)
        return written

    def write_for_env(self, secret: Secret, path: str) -> bool:
        """Generate and store one value at ``path``.  Returns False if skipped."""
        gen_type = secret.generator_type
        if gen_type in NEVER_GENERATED:
            print(f"[skip] static secret, set out of band: {path}")
            return False
        if gen_type in UNSUPPORTED:
            print(f"[skip] {gen_type} secrets are not yet supported: {path}")
            return False
        if secret.generator is None:
            raise GeneratorError(f"nil generators are not supported. secret: {secret.name!r}")

        try:
            value = secret.generator.generate()
        except GeneratorError as e:
            raise GeneratorError(f"failed to generate value for {secret.name!r}") from e
        if value is None:
            raise GeneratorError(f"generator produced no value for {secret.name!r}")

        if gen_type == "tls":
            fields = self._cert_fields(secret, value)
        else:
            fields = {"value": value}
        fields["generator_data"] = generator_audit_record(secret.generator_spec)

        print(f"[change] writing secret: {path}")
        self.store.write(path, {"data": fields})
        return True

    @staticmethod
    def _cert_fields(secret: Secret, value: str) -> Dict[str, Any]:
        try:
            bundle = json.loads(value)
        except ValueError as e:
            raise GeneratorError(f"failed to unmarshal cert info for {secret.name!r}") from e
        return {
            "private_key": bundle.get("private_key"),
            "certificate": bundle.get("certificate"),
            "issuing_ca": bundle.get("issuing_ca"),
            "serial_number": bundle.get("serial_number"),
            "ca_chain": bundle.get("ca_chain"),
            "private_key_type": bundle.get("private_key_type"),
            "expiration": bundle.get("expiration"),
        }
