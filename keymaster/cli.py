"""
keymaster: reconcile Vault secrets, policies and auth roles from team manifests.

Subcommands:
    sync      Validate every manifest, then apply them to Vault
    syntax    Validate manifests only; never connects to Vault
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from . import __version__
from .config import CONFIG_FILE, Settings, load_manifests, load_settings
from .errors import KeymasterError, error_chain
from .store import connect
from .sync import KeyMaster, check_clusters
from .team import Team, load_team


def _manifest_paths(args: argparse.Namespace) -> List[str]:
    paths = list(args.paths or []) + list(args.file or [])
    if not paths:
        raise KeymasterError("no manifests given (pass paths or --file)")
    return paths


def _settings(args: argparse.Namespace) -> Settings:
    return load_settings(
        Path(args.config) if args.config else None,
        address=getattr(args, "address", None),
        token=getattr(args, "token", None),
    )


def validate_all(args: argparse.Namespace, settings: Settings) -> List[Tuple[Path, bytes, Team]]:
    clusters = settings.cluster_registry()
    validated = []
    for path, data in load_manifests(_manifest_paths(args)):
        try:
            team = load_team(data, pki_role=settings.pki_role)
            check_clusters(team, clusters)
        except KeymasterError as e:
            raise KeymasterError(str(path)) from e
        validated.append((path, data, team))
    return validated


def cmd_syntax(args: argparse.Namespace) -> int:
    """Validate manifests without touching Vault."""
    settings = _settings(args)
    validated = validate_all(args, settings)
    for path, _, team in validated:
        print(f"[ok] {path}: team {team.name}, {len(team.secrets)} secret(s), {len(team.roles)} role(s)")
    print(f"[done] {len(validated)} manifest(s) valid")
    return 0


def cmd_sync(args: argparse.Namespace) -> int:
    """Apply every manifest to Vault."""
    settings = _settings(args)
    # nothing is written unless every manifest validates
    validated = validate_all(args, settings)

    print("=== keymaster sync ===")
    print(f"  Vault: {settings.vault_addr or '(unset)'}")
    store = connect(settings.vault_addr, settings.vault_token)

    km = KeyMaster(
        store,
        clusters=settings.cluster_registry(),
        host_ca_cert=settings.host_ca_cert,
        ip_restriction=settings.ip_restriction,
        pki_role=settings.pki_role,
    )
    changes = 0
    for path, data, _ in validated:
        print(f"\n--- {path} ---")
        try:
            report = km.sync(data)
        except KeymasterError as e:
            raise KeymasterError(str(path)) from e
        changes += report.changes
    print(f"\n[done] {len(validated)} team(s), {changes} change(s)")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _add_manifest_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("paths", nargs="*", help="Manifest files or directories of *.yml/*.yaml")
    p.add_argument("--file", "-f", action="append", default=[],
                   help="Manifest file (repeatable)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keymaster",
        description="Reconcile Vault secrets, policies and auth roles from team manifests.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help=f"Path to settings file (default: {CONFIG_FILE} in the working directory)",
    )

    subs = parser.add_subparsers(dest="command", help="Subcommand")

    # -- sync ----------------------------------------------------------------
    p_sync = subs.add_parser("sync", help="Apply manifests to Vault")
    _add_manifest_args(p_sync)
    p_sync.add_argument("--address", "-a", default=None,
                        help="Vault URL (default: VAULT_ADDR or vault.addr)")
    p_sync.add_argument("--token", default=None, help="Vault token (default: VAULT_TOKEN)")

    # -- syntax --------------------------------------------------------------
    p_syn = subs.add_parser("syntax", help="Validate manifests without contacting Vault")
    _add_manifest_args(p_syn)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    parser = build_parser()
    # Intercept "help" before argparse rejects it as an unknown subcommand
    if not argv or argv[0] in ("help", "-h", "--help"):
        parser.print_help()
        return 0
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    dispatch = {
        "sync": cmd_sync,
        "syntax": cmd_syntax,
    }

    try:
        return dispatch[args.command](args)
    except KeymasterError as e:
        print(f"error: {error_chain(e)}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
