"""Role access policies.

A role gets one policy per environment.  The policy grants ``read`` on each of
the role's secrets in that environment, one explicit path per secret, plus
``read`` on the policy itself so a token holding it can inspect its grants::

    {
      "path": {
        "core-services/data/foo/dev": {"capabilities": ["read"]},
        "sys/policy/core-services-app1-dev": {"capabilities": ["read"]}
      }
    }
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import BackendError
from .paths import policy_name, policy_path, secret_path
from .store import Store
from .team import Role

READ_CAPABILITIES = ["read"]


@dataclass
class VaultPolicy:
    name: str
    path: str
    payload: Dict[str, Any]


def build_payload(role: Role, env: str) -> Dict[str, Any]:
    paths: Dict[str, Any] = {}
    for ref in role.secrets:
        paths[secret_path(ref.team, ref.name, env)] = {"capabilities": list(READ_CAPABILITIES)}
    paths[policy_path(role.team, role.name, env)] = {"capabilities": list(READ_CAPABILITIES)}
    return {"path": paths}


def build_policy(role: Role, env: str) -> VaultPolicy:
    """Compose the policy for ``role`` in ``env``.  No I/O."""
    return VaultPolicy(
        name=policy_name(role.team, role.name, env),
        path=policy_path(role.team, role.name, env),
        payload=build_payload(role, env),
    )


class PolicyManager:
    """Writes, reads back and deletes policies under ``sys/policy``."""

    def __init__(self, store: Store):
        self.store = store

    def write(self, policy: VaultPolicy) -> None:
        rules = json.dumps(policy.payload, sort_keys=True)
        self.store.write(policy.path, {"policy": rules})

    def read(self, path: str) -> Optional[VaultPolicy]:
        data = self.store.read(path)
        if not data:
            return None
        rules = data.get("rules") or data.get("policy")
        if not isinstance(rules, str) or not rules.strip():
            return None
        try:
            payload = json.loads(rules)
        except ValueError as e:
            raise BackendError(f"failed to unmarshal policy rules at {path}", "read", path) from e
        name = data.get("name") or path.rsplit("/", 1)[-1]
        return VaultPolicy(name=name, path=path, payload=payload)

    def delete(self, path: str) -> None:
        """Only the policy goes; auth roles and secrets are left alone."""
        self.store.delete(path)

    def ensure(self, policy: VaultPolicy) -> bool:
        """Write ``policy`` unless the stored payload already matches.

        Returns True if a write happened.
        """
        current = self.read(policy.path)
        if current is not None and current.payload == policy.payload:
            print(f"[ok] policy unchanged: {policy.name}")
            return False
        action = "[change] updating" if current is not None else "[change] creating"
        print(f"{action} policy: {policy.name}")
        self.write(policy)
        return True
