"""Tests for keymaster.policy."""
from __future__ import annotations

import json

import pytest

from keymaster.errors import BackendError
from keymaster.policy import PolicyManager, VaultPolicy, build_policy
from keymaster.team import Realm, Role, SecretRef


def _role() -> Role:
    return Role(
        name="app1",
        team="core-services",
        secrets=[SecretRef("foo", "core-services"), SecretRef("bar", "core-platform")],
        realms=[Realm(type="k8s")],
    )


def test_build_policy():
    policy = build_policy(_role(), "dev")
    assert policy.name == "core-services-app1-dev"
    assert policy.path == "sys/policy/core-services-app1-dev"
    assert policy.payload == {
        "path": {
            "core-services/data/foo/dev": {"capabilities": ["read"]},
            "core-platform/data/bar/dev": {"capabilities": ["read"]},
            "sys/policy/core-services-app1-dev": {"capabilities": ["read"]},
        }
    }


def test_no_wildcards():
    for env in ("dev", "prod"):
        for path in build_policy(_role(), env).payload["path"]:
            assert "*" not in path
            assert path.endswith(env)


def test_role_without_secrets_still_reads_itself():
    role = Role(name="r", team="t", realms=[Realm(type="iam")])
    assert build_policy(role, "dev").payload == {
        "path": {"sys/policy/t-r-dev": {"capabilities": ["read"]}}
    }


def test_write_and_read_back(client, store):
    manager = PolicyManager(store)
    policy = build_policy(_role(), "dev")
    manager.write(policy)

    stored = client.stored("sys/policy/core-services-app1-dev")
    assert json.loads(stored["policy"]) == policy.payload

    read = manager.read(policy.path)
    assert read == VaultPolicy(name=policy.name, path=policy.path, payload=policy.payload)


def test_read_missing(store):
    assert PolicyManager(store).read("sys/policy/nope") is None


def test_read_invalid_rules(client, store):
    client.write_data("sys/policy/hcl", data={"policy": 'path "x" { capabilities = ["read"] }'})
    with pytest.raises(BackendError) as exc:
        PolicyManager(store).read("sys/policy/hcl")
    assert exc.value.path == "sys/policy/hcl"
    assert isinstance(exc.value.__cause__, ValueError)


def test_delete(client, store):
    manager = PolicyManager(store)
    policy = build_policy(_role(), "dev")
    manager.write(policy)
    manager.delete(policy.path)
    assert manager.read(policy.path) is None


def test_ensure_is_idempotent(client, store, capsys):
    manager = PolicyManager(store)
    policy = build_policy(_role(), "dev")

    assert manager.ensure(policy) is True
    assert "[change] creating policy: core-services-app1-dev" in capsys.readouterr().out

    assert manager.ensure(policy) is False
    assert "[ok] policy unchanged" in capsys.readouterr().out
    assert client.writes.count(policy.path) == 1


def test_ensure_updates_drift(client, store, capsys):
    manager = PolicyManager(store)
    policy = build_policy(_role(), "dev")
    client.write_data(policy.path, data={"policy": json.dumps({"path": {}})})

    assert manager.ensure(policy) is True
    assert "[change] updating policy" in capsys.readouterr().out
    assert manager.read(policy.path).payload == policy.payload
