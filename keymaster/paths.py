"""Deterministic names and store paths.

Team names like ``core-platform`` produce policy names with embedded hyphens,
so a policy name cannot be split back into its inputs.
"""
from __future__ import annotations

from .errors import PathConstructionError

POLICY_PREFIX = "sys/policy/"


def _require(**parts: str) -> None:
    for label, value in parts.items():
        if not value:
            raise PathConstructionError(f"cannot build path with empty {label}")


def secret_path(team: str, name: str, env: str) -> str:
    _require(team=team, secret=name, environment=env)
    return f"{team}/data/{name}/{env}"


def policy_name(team: str, role: str, env: str) -> str:
    _require(team=team, role=role, environment=env)
    return f"{team}-{role}-{env}"


def policy_path(team: str, role: str, env: str) -> str:
    return POLICY_PREFIX + policy_name(team, role, env)


def k8s_auth_path(cluster: str, team: str, role: str) -> str:
    """One auth mount per cluster; each cluster serves a single environment."""
    _require(cluster=cluster, team=team, role=role)
    return f"auth/k8s-{cluster}/role/{team}-{role}"


def tls_auth_path(team: str, role: str, env: str) -> str:
    _require(team=team, role=role, environment=env)
    return f"auth/cert/certs/{team}-{role}-{env}"


def iam_auth_path(team: str, role: str) -> str:
    _require(team=team, role=role)
    return f"auth/aws/role/{team}-{role}"
