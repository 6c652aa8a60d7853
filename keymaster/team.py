"""Team manifests: data model and validation.

A manifest describes one team::

    name: core-services
    environments: [prod, stage, dev]
    secrets:
      - name: foo
        generator: {type: alpha, length: 10}
    roles:
      - name: app1
        secrets:
          - name: foo
          - name: bar
            team: core-platform
        realms:
          - type: k8s
            identifiers: [bravo]
            principals: [default]
            environment: dev

``load_team`` checks the manifest in a fixed order and raises on the first
problem. It never talks to Vault.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .errors import ConfigLoadError, MissingSecretError, ValidationError
from .generators import DEFAULT_PKI_ROLE, CertIssuer, Generator, build_generator

REALM_K8S = "k8s"
REALM_TLS = "tls"
REALM_IAM = "iam"
SUPPORTED_REALMS = (REALM_K8S, REALM_TLS, REALM_IAM)

ERR_NAMELESS_TEAM = "nameless teams are not supported"
ERR_SLASH_IN_TEAM = "team names may not contain '/'"
ERR_NO_ENVIRONMENTS = "teams must declare at least one environment"
ERR_NAMELESS_SECRET = "nameless secrets are not supported"
ERR_MISSING_GENERATOR = "missing generator in secret"
ERR_NAMELESS_ROLE = "nameless roles are not supported"
ERR_SLASH_IN_ROLE = "role names may not contain '/'"
ERR_REALMLESS_ROLE = "realmless roles are not supported"
ERR_UNSUPPORTED_REALM = "unsupported realm"
ERR_MISSING_SECRET = "missing secret in role"


@dataclass
class Secret:
    name: str
    team: str
    generator_spec: Dict[str, Any]
    generator: Optional[Generator] = None
    environments: List[str] = field(default_factory=list)

    @property
    def generator_type(self) -> str:
        return str(self.generator_spec.get("type", ""))


@dataclass(frozen=True)
class SecretRef:
    """A role's pointer at a secret, possibly owned by another team."""

    name: str
    team: str


@dataclass
class Realm:
    type: str
    identifiers: List[str] = field(default_factory=list)
    principals: List[str] = field(default_factory=list)
    environment: str = ""

    def applies_to(self, env: str) -> bool:
        """A realm without an environment is bound to all of them."""
        return not self.environment or self.environment == env


@dataclass
class Role:
    name: str
    team: str
    secrets: List[SecretRef] = field(default_factory=list)
    realms: List[Realm] = field(default_factory=list)


@dataclass
class Team:
    name: str
    environments: List[str]
    secrets: List[Secret] = field(default_factory=list)
    roles: List[Role] = field(default_factory=list)
    secrets_by_name: Dict[str, Secret] = field(default_factory=dict)
    roles_by_name: Dict[str, Role] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (Mapping, list)):
        raise ValidationError(f"expected a name, got {type(value).__name__}: {value!r}")
    return str(value).strip()


def _str_list(value: Any, what: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ValidationError(f"{what} must be a list")
    return [_text(v) for v in value if _text(v)]


def _mapping_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{what} must be a list")
    return value


def _parse_realm(raw: Union[str, Mapping[str, Any]]) -> Realm:
    if isinstance(raw, str):
        return Realm(type=raw.strip())
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{ERR_UNSUPPORTED_REALM}: {raw!r}")
    return Realm(
        type=_text(raw.get("type")),
        identifiers=_str_list(raw.get("identifiers"), "realm identifiers"),
        principals=_str_list(raw.get("principals"), "realm principals"),
        environment=_text(raw.get("environment")),
    )


def _parse_environments(raw: Any) -> List[str]:
    envs: List[str] = []
    for env in _str_list(raw, "environments"):
        if env not in envs:
            envs.append(env)
    return envs


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def parse_manifest(data: Union[bytes, str]) -> Dict[str, Any]:
    """Deserialize one manifest document."""
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ConfigLoadError("failed to load data in supplied config") from e
    if not isinstance(doc, dict):
        raise ConfigLoadError(
            f"failed to load data in supplied config: expected a mapping, got {type(doc).__name__}"
        )
    return doc


def load_team(
    data: Union[bytes, str],
    issuer: Optional[CertIssuer] = None,
    pki_role: str = DEFAULT_PKI_ROLE,
) -> Team:
    """Parse and validate a team manifest.

    ``issuer`` is bound to any ``tls`` generators for later use; it is not
    called here.
    """
    doc = parse_manifest(data)

    team_name = _text(doc.get("name"))
    if not team_name:
        raise ValidationError(ERR_NAMELESS_TEAM)
    if "/" in team_name:
        raise ValidationError(f"{ERR_SLASH_IN_TEAM}: {team_name!r}")

    environments = _parse_environments(doc.get("environments"))
    if not environments:
        raise ValidationError(f"{ERR_NO_ENVIRONMENTS}: {team_name}")

    team = Team(name=team_name, environments=environments)

    for raw in _mapping_list(doc.get("secrets"), "secrets"):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"secrets must be mappings, got {raw!r}")
        owner = _text(raw.get("team")) or team_name
        spec = raw.get("generator")
        if not spec:
            raise ValidationError(f"{ERR_MISSING_GENERATOR}: {_text(raw.get('name')) or '(nameless)'}")
        name = _text(raw.get("name"))
        if not name:
            raise ValidationError(ERR_NAMELESS_SECRET)

        # GeneratorError propagates unwrapped
        generator = build_generator(spec, issuer=issuer, pki_role=pki_role)

        secret = Secret(
            name=name,
            team=owner,
            generator_spec=dict(spec),
            generator=generator,
            environments=list(environments),
        )
        team.secrets.append(secret)
        team.secrets_by_name[name] = secret

    for raw in _mapping_list(doc.get("roles"), "roles"):
        if not isinstance(raw, Mapping):
            raise ValidationError(f"roles must be mappings, got {raw!r}")
        role_name = _text(raw.get("name"))
        if not role_name:
            raise ValidationError(ERR_NAMELESS_ROLE)
        if "/" in role_name:
            raise ValidationError(f"{ERR_SLASH_IN_ROLE}: {role_name!r}")

        realms = [_parse_realm(r) for r in _mapping_list(raw.get("realms"), "realms")]
        if not realms:
            raise ValidationError(f"{ERR_REALMLESS_ROLE}: {role_name}")
        for realm in realms:
            if realm.type not in SUPPORTED_REALMS:
                raise ValidationError(f"{ERR_UNSUPPORTED_REALM}: {realm.type!r} in role {role_name}")

        role = Role(name=role_name, team=_text(raw.get("team")) or team_name, realms=realms)

        for ref in _mapping_list(raw.get("secrets"), f"secrets of role {role_name}"):
            if not isinstance(ref, Mapping) or not _text(ref.get("name")):
                raise ValidationError(f"{ERR_NAMELESS_SECRET}: role {role_name}")
            ref_team = _text(ref.get("team")) or role.team
            ref_name = _text(ref.get("name"))
            # references into other teams are resolved by those teams' manifests
            if ref_team == team_name and ref_name not in team.secrets_by_name:
                raise MissingSecretError(f"{ERR_MISSING_SECRET}: {role_name} -> {ref_name}")
            role.secrets.append(SecretRef(name=ref_name, team=ref_team))

        team.roles.append(role)
        team.roles_by_name[role_name] = role

    return team
