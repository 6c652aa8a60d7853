"""Auth backend roles: granting a role's policies through each realm.

Every realm type maps to a Vault auth backend whose roles carry a
``policies`` list.  Vault replaces that list wholesale on write, so adding or
removing one policy is a read-modify-write done here:

* ``add_policy`` reads the current list (``["default"]`` when the backend role
  does not exist yet), appends the policy if missing and writes the result.
* ``remove_policy`` filters the policy out and writes the remainder.
* ``write_auth`` writes an exact list, with no ``default`` fallback.  This is
  the first-time creation path and is kept separate on purpose.

There is no locking around the read-modify-write.  Two runs touching the same
role at once can lose an update; run reconciliation one job at a time.

Clusters for the k8s backends are configured once per cluster (manually)::

    vault auth enable -path=k8s-bravo kubernetes
    vault write auth/k8s-bravo/config kubernetes_host=<apiserver url> \\
        kubernetes_ca_cert=@k8s-ca.crt token_reviewer_jwt=<token>
"""
from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import BackendError, KeymasterError, ValidationError
from .paths import iam_auth_path, k8s_auth_path, policy_name, tls_auth_path
from .policy import VaultPolicy
from .store import Store
from .team import REALM_IAM, REALM_K8S, REALM_TLS, Realm, Role

DEFAULT_POLICY = "default"
DEFAULT_SERVICE_ACCOUNT = "default"


def norm_list(x: Any) -> List[str]:
    if x is None:
        return []
    if isinstance(x, list):
        return [str(v) for v in x]
    if isinstance(x, str):
        return [p.strip() for p in x.split(",") if p.strip()]
    return [str(x)]


def _dedupe(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


# ---------------------------------------------------------------------------
# Clusters
# ---------------------------------------------------------------------------

@dataclass
class Cluster:
    name: str
    api_server_url: str = ""
    ca_cert: str = ""
    environment: str = ""
    bound_cidrs: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Cluster":
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("nameless clusters are not supported")
        return cls(
            name=name,
            api_server_url=str(raw.get("apiserver") or ""),
            ca_cert=str(raw.get("ca_cert") or ""),
            environment=str(raw.get("environment") or ""),
            bound_cidrs=norm_list(raw.get("bound_cidrs")),
        )


class ClusterRegistry:
    """The Kubernetes clusters keymaster may write auth roles for."""

    def __init__(self, clusters: Iterable[Cluster] = ()):
        self.clusters: List[Cluster] = list(clusters)
        self.by_name: Dict[str, Cluster] = {c.name: c for c in self.clusters}

    def get(self, name: str) -> Cluster:
        try:
            return self.by_name[name]
        except KeyError:
            raise ValidationError(f"unknown cluster: {name}") from None

    def for_environment(self, env: str) -> List[Cluster]:
        return [c for c in self.clusters if c.environment == env]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class AuthBackend:
    """Shared merge logic.  Subclasses say where roles live and what they bind."""

    realm_type = ""

    def __init__(self, store: Store):
        self.store = store

    def targets(self, role: Role, realm: Realm, env: str) -> List[Tuple[str, Any]]:
        """``(path, context)`` pairs for every backend role this realm maps to."""
        raise NotImplementedError

    def binding(self, role: Role, realm: Realm, env: str, context: Any) -> Dict[str, Any]:
        """Mechanism-specific fields written alongside ``policies``."""
        raise NotImplementedError

    def auth_paths(self, role: Role, realm: Realm, env: str) -> List[str]:
        return [path for path, _ in self.targets(role, realm, env)]

    def read_auth(self, path: str) -> Optional[Dict[str, Any]]:
        return self.store.read(path)

    def granted_policies(self, path: str) -> List[str]:
        data = self.read_auth(path)
        if data is None:
            return [DEFAULT_POLICY]
        return norm_list(data.get("policies"))

    def _write(self, path: str, role: Role, realm: Realm, env: str, context: Any,
               policies: List[str]) -> None:
        data = self.binding(role, realm, env, context)
        data["policies"] = list(policies)
        self.store.write(path, data)

    def write_auth(self, role: Role, realm: Realm, env: str, policies: List[str]) -> None:
        for path, context in self.targets(role, realm, env):
            print(f"[change] writing {self.realm_type} auth role: {path}")
            self._write(path, role, realm, env, context, policies)

    def add_policy(self, role: Role, realm: Realm, env: str, policy: VaultPolicy) -> List[str]:
        """Grant ``policy`` on every target.  Returns the paths written."""
        written: List[str] = []
        for path, context in self.targets(role, realm, env):
            current = self.granted_policies(path)
            if policy.name in current:
                print(f"[ok] {self.realm_type} auth role {path} already grants {policy.name}")
                continue
            print(f"[change] granting {policy.name} on {self.realm_type} auth role {path}")
            self._write(path, role, realm, env, context, current + [policy.name])
            written.append(path)
        return written

    def remove_policy(self, role: Role, realm: Realm, env: str, policy: VaultPolicy) -> None:
        for path, context in self.targets(role, realm, env):
            current = self.granted_policies(path)
            if policy.name not in current:
                continue
            print(f"[change] revoking {policy.name} on {self.realm_type} auth role {path}")
            remaining = [p for p in current if p != policy.name]
            self._write(path, role, realm, env, context, remaining)

    def delete_auth(self, role: Role, realm: Realm, env: str) -> None:
        for path, _ in self.targets(role, realm, env):
            self.store.delete(path)


class K8sAuth(AuthBackend):
    """One backend role per cluster; the cluster fixes the environment."""

    realm_type = REALM_K8S

    def __init__(self, store: Store, clusters: ClusterRegistry):
        super().__init__(store)
        self.clusters = clusters

    @staticmethod
    def serves(realm: Realm, cluster: Cluster, env: str) -> bool:
        """True if ``realm`` resolves to ``cluster`` when reconciling ``env``."""
        if not realm.applies_to(env):
            return False
        if not realm.identifiers:
            return cluster.environment == env
        if cluster.name not in realm.identifiers:
            return False
        return not cluster.environment or cluster.environment == env

    def clusters_for(self, realm: Realm, env: str) -> List[Cluster]:
        if not realm.identifiers:
            selected = self.clusters.for_environment(env)
            if not selected:
                print(f"[warn] no cluster serves {env}; k8s realm has nothing to bind")
            return selected
        selected = []
        for name in realm.identifiers:
            cluster = self.clusters.get(name)
            if cluster.environment and cluster.environment != env:
                print(f"[warn] cluster {name} serves {cluster.environment}, not {env}; skipping")
                continue
            selected.append(cluster)
        return selected

    def targets(self, role, realm, env):
        return [
            (k8s_auth_path(cluster.name, role.team, role.name), cluster)
            for cluster in self.clusters_for(realm, env)
        ]

    def namespaces(self, role: Role, env: str, cluster: Cluster) -> List[str]:
        # every k8s realm landing on this cluster shares one backend role
        merged = _dedupe(
            ns
            for r in role.realms
            if r.type == REALM_K8S and self.serves(r, cluster, env)
            for ns in r.principals
        )
        return merged or [role.team]

    def binding(self, role, realm, env, context):
        cluster: Cluster = context
        return {
            "bound_service_account_names": DEFAULT_SERVICE_ACCOUNT,
            "bound_service_account_namespaces": ",".join(self.namespaces(role, env, cluster)),
            "bound_cidrs": ",".join(cluster.bound_cidrs),
        }


def resolve_addresses(hostname: str) -> List[str]:
    try:
        infos = socket.getaddrinfo(hostname, None)
    except OSError as e:
        raise BackendError(f"failed to look up ip addresses for {hostname}", "resolve", hostname) from e
    return _dedupe(info[4][0] for info in infos)


class TlsAuth(AuthBackend):
    """Cert auth roles, one per team/role/environment.

    Every ``tls`` realm of the role bound to the environment contributes its
    hostnames.  With ``ip_restriction`` on, each hostname is resolved and
    the role is bound to the resulting addresses.
    """

    realm_type = REALM_TLS

    def __init__(self, store: Store, host_ca_cert: str = "", ip_restriction: bool = False):
        super().__init__(store)
        self.host_ca_cert = host_ca_cert
        self.ip_restriction = ip_restriction

    def targets(self, role, realm, env):
        return [(tls_auth_path(role.team, role.name, env), None)]

    def hostnames(self, role: Role, env: str) -> List[str]:
        return _dedupe(
            host
            for r in role.realms
            if r.type == REALM_TLS and r.applies_to(env)
            for host in r.principals
        )

    def binding(self, role, realm, env, context):
        # vault rejects cert roles without a CA to verify clients against
        if not self.host_ca_cert:
            raise KeymasterError(
                f"tls.host_ca_cert is not set; cannot write cert auth role for {role.team}-{role.name}-{env}"
            )
        hostnames = self.hostnames(role, env)
        data: Dict[str, Any] = {
            "allowed_common_names": ",".join(hostnames),
            "display_name": policy_name(role.team, role.name, env),
            "certificate": self.host_ca_cert,
        }
        if self.ip_restriction:
            ips: List[str] = []
            for host in hostnames:
                ips.extend(resolve_addresses(host))
            data["bound_cidrs"] = ",".join(_dedupe(ips))
        return data


class IamAuth(AuthBackend):
    """AWS IAM auth roles, one per team/role across all environments."""

    realm_type = REALM_IAM

    def targets(self, role, realm, env):
        return [(iam_auth_path(role.team, role.name), None)]

    def binding(self, role, realm, env, context):
        arns = _dedupe(
            arn for r in role.realms if r.type == REALM_IAM for arn in r.principals
        )
        return {
            "auth_type": "iam",
            "bound_iam_principal_arn": ",".join(arns),
        }


def build_backends(
    store: Store,
    clusters: Optional[ClusterRegistry] = None,
    host_ca_cert: str = "",
    ip_restriction: bool = False,
) -> Dict[str, AuthBackend]:
    """One strategy per supported realm type."""
    return {
        REALM_K8S: K8sAuth(store, clusters or ClusterRegistry()),
        REALM_TLS: TlsAuth(store, host_ca_cert=host_ca_cert, ip_restriction=ip_restriction),
        REALM_IAM: IamAuth(store),
    }
