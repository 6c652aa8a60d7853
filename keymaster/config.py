"""Settings file and manifest discovery.

Settings live in ``keymaster.yaml`` (or wherever ``--config`` points)::

    vault:
      addr: https://vault.example.com:8200
      pki_role: keymaster
    tls:
      host_ca_cert: "-----BEGIN CERTIFICATE-----..."
      ip_restriction: false
    clusters:
      - name: bravo
        apiserver: https://kube-bravo:6443
        ca_cert: "..."
        environment: prod
        bound_cidrs: [10.0.0.1]
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from .auth import Cluster, ClusterRegistry
from .errors import ConfigLoadError, ValidationError
from .generators import DEFAULT_PKI_ROLE

CONFIG_FILE = "keymaster.yaml"
MANIFEST_SUFFIXES = (".yml", ".yaml")


def default_config_path() -> Path:
    return Path.cwd() / CONFIG_FILE


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigLoadError(f"failed to load settings from {path}") from e
    if not isinstance(config, dict):
        raise ConfigLoadError(f"settings in {path} must be a mapping")
    return config


def deep_get(d: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Retrieve a nested value using a dotted path string."""
    cur: Any = d
    for p in path.split("."):
        if not isinstance(cur, dict) or p not in cur:
            return default
        cur = cur[p]
    return cur


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class Settings:
    vault_addr: str = ""
    vault_token: str = ""
    pki_role: str = DEFAULT_PKI_ROLE
    host_ca_cert: str = ""
    ip_restriction: bool = False
    clusters: List[Cluster] = field(default_factory=list)

    def cluster_registry(self) -> ClusterRegistry:
        return ClusterRegistry(self.clusters)


def load_settings(
    path: Optional[Path] = None,
    address: Optional[str] = None,
    token: Optional[str] = None,
) -> Settings:
    """Build settings with precedence CLI flag > env var > settings file > default."""
    config = load_config(path or default_config_path())

    def pick(cli_val: Any, env_var: Optional[str], keypath: Optional[str], default: Any = None) -> Any:
        if cli_val:
            return cli_val
        if env_var and os.environ.get(env_var):
            return os.environ[env_var]
        if keypath:
            val = deep_get(config, keypath)
            if val is not None and val != "":
                return val
        return default

    raw_clusters = config.get("clusters") or []
    if not isinstance(raw_clusters, list):
        raise ConfigLoadError("clusters must be a list")
    clusters = []
    for raw in raw_clusters:
        if not isinstance(raw, dict):
            raise ConfigLoadError(f"cluster entries must be mappings, got {raw!r}")
        clusters.append(Cluster.from_dict(raw))
    names = [c.name for c in clusters]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ValidationError(f"duplicate cluster names: {', '.join(dupes)}")

    return Settings(
        vault_addr=str(pick(address, "VAULT_ADDR", "vault.addr", "")),
        vault_token=str(pick(token, "VAULT_TOKEN", None, "")),
        pki_role=str(pick(None, None, "vault.pki_role", DEFAULT_PKI_ROLE)),
        host_ca_cert=str(pick(None, None, "tls.host_ca_cert", "")),
        ip_restriction=_as_bool(pick(None, None, "tls.ip_restriction", False)),
        clusters=clusters,
    )


def _discover(path: Path) -> List[Path]:
    if path.is_dir():
        return sorted(
            p for p in path.rglob("*")
            if p.is_file() and p.suffix in MANIFEST_SUFFIXES
        )
    if path.is_file():
        return [path]
    raise ConfigLoadError(f"no such file or directory: {path}")


def load_manifests(paths: Iterable[str]) -> List[Tuple[Path, bytes]]:
    """Read every manifest named by ``paths``; directories are walked."""
    manifests: List[Tuple[Path, bytes]] = []
    for raw in paths:
        for path in _discover(Path(raw)):
            try:
                manifests.append((path, path.read_bytes()))
            except OSError as e:
                raise ConfigLoadError(f"failed to read {path}") from e
    return manifests
