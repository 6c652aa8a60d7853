"""Reconcile one team's manifest against Vault.

Order per team:

1. provision every secret (write-once);
2. for every role and environment, write the role's policy if it drifted;
3. grant that policy on every realm of the role bound to the environment.

Every step is idempotent, so a second run against the same manifest only
prints ``[ok]`` lines.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .auth import AuthBackend, ClusterRegistry, build_backends
from .errors import ValidationError
from .generators import DEFAULT_PKI_ROLE
from .policy import PolicyManager, build_policy
from .provision import SecretProvisioner
from .store import Store
from .team import REALM_K8S, Team, load_team


@dataclass
class SyncReport:
    team: str
    secrets_written: List[str] = field(default_factory=list)
    policies_written: List[str] = field(default_factory=list)
    auth_written: List[str] = field(default_factory=list)

    @property
    def changes(self) -> int:
        return len(self.secrets_written) + len(self.policies_written) + len(self.auth_written)


def check_clusters(team: Team, clusters: ClusterRegistry) -> None:
    """Fail before any write if a k8s realm names a cluster nobody configured."""
    for role in team.roles:
        for realm in role.realms:
            if realm.type != REALM_K8S:
                continue
            for name in realm.identifiers:
                if name not in clusters.by_name:
                    raise ValidationError(f"unknown cluster {name!r} in role {role.name}")


class KeyMaster:
    """Drives the provisioner, policy manager and auth strategies for a team."""

    def __init__(
        self,
        store: Store,
        clusters: Optional[ClusterRegistry] = None,
        host_ca_cert: str = "",
        ip_restriction: bool = False,
        pki_role: str = DEFAULT_PKI_ROLE,
    ):
        self.store = store
        self.clusters = clusters or ClusterRegistry()
        self.pki_role = pki_role
        self.provisioner = SecretProvisioner(store)
        self.policies = PolicyManager(store)
        self.backends: Dict[str, AuthBackend] = build_backends(
            store,
            clusters=self.clusters,
            host_ca_cert=host_ca_cert,
            ip_restriction=ip_restriction,
        )

    def load(self, data: Union[bytes, str]) -> Team:
        """Validate a manifest with tls generators bound to this store."""
        team = load_team(data, issuer=self.store, pki_role=self.pki_role)
        check_clusters(team, self.clusters)
        return team

    def reconcile(self, team: Team) -> SyncReport:
        report = SyncReport(team=team.name)

        for secret in team.secrets:
            report.secrets_written.extend(self.provisioner.provision(secret))

        for role in team.roles:
            for realm in role.realms:
                if realm.environment and realm.environment not in team.environments:
                    print(
                        f"[warn] role {role.name}: {realm.type} realm bound to undeclared "
                        f"environment {realm.environment!r}; ignored"
                    )

            for env in team.environments:
                policy = build_policy(role, env)
                if self.policies.ensure(policy):
                    report.policies_written.append(policy.name)

                for realm in role.realms:
                    if not realm.applies_to(env):
                        continue
                    report.auth_written.extend(
                        self.backends[realm.type].add_policy(role, realm, env, policy)
                    )

        print(f"[done] {team.name}: {report.changes} change(s)")
        return report

    def sync(self, data: Union[bytes, str]) -> SyncReport:
        return self.reconcile(self.load(data))
