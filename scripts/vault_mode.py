#!/usr/bin/env python3
"""
Vault mode CLI: inspect and switch the local secret store's storage mode.

Commands:
    vault_mode status [--json]
    vault_mode switch <persistent|ephemeral> [--non-interactive]
                      [--auto-unseal=true|false] [--no-migrate] [--confirm TEXT]
                      [--allow-incomplete-backup]
    vault_mode unseal
    vault_mode backup create
    vault_mode backup list
    vault_mode restore <snapshot-id> [--yes]
    vault_mode prune [--keep N]

Exit codes:
    0 - success or operator cancellation
    1 - operation failed (stage, last completed stage and remediation printed)
    2 - invalid arguments

Example:
    $ python scripts/vault_mode.py status
    $ python scripts/vault_mode.py switch persistent --non-interactive --auto-unseal=true
    $ python scripts/vault_mode.py restore 20260101T120000000000Z-1a2b3c4d --yes
"""

from __future__ import annotations

import argparse
import getpass
import json
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from libs.common.logging import OperationContext, configure_logging  # noqa: E402
from libs.vault_mode.exceptions import (  # noqa: E402
    InsufficientKeysError,
    ManualUnsealRequiredError,
    MigrationFailedError,
    ModeRecordCorruptError,
    ModeTransitionError,
    OperationCancelledError,
    StoreError,
    VaultModeError,
)
from libs.vault_mode.migration import MigrationCoordinator  # noqa: E402
from libs.vault_mode.settings import VaultModeSettings, get_settings  # noqa: E402
from libs.vault_mode.types import ModeRecord, StorageMode  # noqa: E402

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_coordinator(settings: VaultModeSettings) -> MigrationCoordinator:
    """Wire the coordinator and its collaborators from settings."""
    return MigrationCoordinator.from_settings(settings, updated_by=_current_user())


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "vault_mode"


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


@contextmanager
def cancel_on_sigint() -> Iterator[threading.Event]:
    """Turn Ctrl-C into a cancellation event for the duration of the block.

    The restore loop checks the event before each write, so an interrupted
    run stops at a recoverable point instead of mid-write.
    """
    event = threading.Event()

    def _handler(signum: int, frame: object) -> None:
        print("\nInterrupt received; stopping after the current step...", file=sys.stderr)
        event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield event
    finally:
        signal.signal(signal.SIGINT, previous)


def _prompt(message: str) -> str:
    try:
        return input(message).strip()
    except EOFError:
        return ""


def _print_remediation(lines: list[str]) -> None:
    if lines:
        print("Remediation:")
        for line in lines:
            print(f"  - {line}")


# =============================================================================
# Commands
# =============================================================================


def cmd_status(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Show the mode record, live seal state and validation findings."""
    try:
        record: ModeRecord | None = coordinator.mode_config.load_or_default()
    except ModeRecordCorruptError:
        record = None

    store: dict[str, object]
    try:
        state = coordinator.client.health()
        store = {
            "reachable": True,
            "initialized": state.initialized,
            "sealed": state.sealed,
            "progress": state.progress,
            "threshold": state.threshold,
        }
    except StoreError as e:
        store = {"reachable": False, "error": str(e)}

    try:
        report = coordinator.reporter.check()
    except (VaultModeError, OSError) as e:
        print(f"Error: failed to collect findings: {e}", file=sys.stderr)
        return EXIT_FAILED

    if args.json:
        output = {
            "mode": record.mode.value if record else None,
            "auto_unseal": record.auto_unseal if record else None,
            "launch_command": record.launch_command if record else None,
            "config_file": str(coordinator.mode_config.path),
            "configured": coordinator.mode_config.exists(),
            "store": store,
            "validation": report.to_dict(),
        }
        print(json.dumps(output, indent=2))
        return EXIT_OK

    print("\nVault Mode Status")
    print("=" * 60)
    if record is None:
        print("Mode:        unknown (mode record corrupt)")
    else:
        print(f"Mode:        {record.mode.value}")
        suffix = "" if coordinator.mode_config.exists() else " (not found, using defaults)"
        print(f"Config:      {coordinator.mode_config.path}{suffix}")
        print(f"Command:     {record.launch_command}")
        if record.mode == StorageMode.persistent:
            print(f"Auto-unseal: {record.auto_unseal}")

    if store["reachable"]:
        print(f"Store:       initialized={store['initialized']} sealed={store['sealed']}")
    else:
        print(f"Store:       not reachable ({store['error']})")

    print(f"\n{'Check':<25} {'Result':<7} Message")
    print("-" * 60)
    for finding in report.findings:
        print(f"{finding.check:<25} {finding.severity.value.upper():<7} {finding.message}")
        for step in finding.remediation:
            print(f"{'':<33}-> {step}")
    print(f"\nOverall: {report.overall.value.upper()}")
    return EXIT_OK


def _choose_switch_option(args: argparse.Namespace) -> tuple[bool, bool] | None:
    """Resolve (confirmed, migrate_secrets), or None for invalid arguments."""
    if args.non_interactive:
        if not args.no_migrate:
            return True, True
        if (args.confirm or "").strip().lower() != "yes":
            print(
                "Error: --no-migrate with --non-interactive requires --confirm yes "
                "(secrets in the current store will not be carried over)",
                file=sys.stderr,
            )
            return None
        return True, False

    print("Migration options:")
    print("  1. Migrate secrets (recommended - preserves data)")
    print("  2. Switch without migration (secrets are not carried over)")
    print("  3. Cancel")
    choice = "2" if args.no_migrate else _prompt("Choose option (1/2/3) [3]: ") or "3"

    if choice == "1":
        return True, True
    if choice == "2":
        answer = args.confirm if args.confirm is not None else _prompt(
            "Secrets will NOT be migrated. Type 'yes' to continue: "
        )
        return answer.strip().lower() == "yes", False
    return False, True


def cmd_switch(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Switch storage mode, migrating secrets by default."""
    target = StorageMode(args.mode)
    try:
        current = coordinator.mode_config.load_or_default()
    except ModeRecordCorruptError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if current.mode == target:
        print(f"Error: already in {target.value} mode; nothing to switch", file=sys.stderr)
        return EXIT_FAILED

    print(f"Current mode: {current.mode.value}")
    print(f"Target mode:  {target.value}")

    resolved = _choose_switch_option(args)
    if resolved is None:
        return EXIT_USAGE
    confirmed, migrate_secrets = resolved

    auto_unseal = args.auto_unseal
    if auto_unseal is None:
        auto_unseal = False
        if confirmed and target == StorageMode.persistent and not args.non_interactive:
            auto_unseal = _prompt("Enable auto-unseal on start? [y/N]: ").lower() in ("y", "yes")

    with cancel_on_sigint() as cancel_event:
        try:
            result = coordinator.migrate(
                current.mode,
                target,
                confirm_explicit=confirmed,
                auto_unseal=auto_unseal,
                migrate_secrets=migrate_secrets,
                allow_incomplete_backup=args.allow_incomplete_backup,
                cancel_event=cancel_event,
            )
        except ModeTransitionError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED
        except MigrationFailedError as e:
            print(f"\nMigration failed at stage '{e.failed_stage.value}' "
                  f"(last completed: '{e.last_completed.value}')")
            print(f"Reason: {e.message}")
            if e.snapshot_id:
                print(f"Snapshot: {e.snapshot_id}")
            _print_remediation(e.remediation)
            return EXIT_FAILED

    if not result.succeeded:
        print("Switch cancelled; nothing was changed.")
        return EXIT_OK

    print(f"\nMode switched: {result.source_mode.value} -> {result.target_mode.value}")
    if result.snapshot_id:
        print(f"  Snapshot: {result.snapshot_id}")
    if result.migrated_secrets:
        print(f"  Secrets restored: {result.restored_count}")
    else:
        print("  Secrets were not migrated")
    if result.pruned:
        print(f"  Old snapshots removed: {len(result.pruned)}")
    return EXIT_OK


def cmd_unseal(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Initialize (first start) and unseal a persistent store from the key file."""
    try:
        record = coordinator.mode_config.load_or_default()
    except ModeRecordCorruptError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    if record.mode == StorageMode.ephemeral:
        print("Ephemeral mode: the store is never sealed, nothing to do.")
        return EXIT_OK

    try:
        state = coordinator.activate(record, force_unseal=True)
    except (InsufficientKeysError, ManualUnsealRequiredError) as e:
        print(f"Error: {e}", file=sys.stderr)
        threshold = getattr(e, "threshold", 0) or coordinator.init_threshold
        _print_remediation(coordinator.seal.manual_instructions(threshold))
        return EXIT_FAILED
    except VaultModeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(f"Store unsealed (threshold {state.threshold or 'n/a'}).")
    return EXIT_OK


def cmd_backup_create(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Snapshot every known prefix from the running store."""
    try:
        record = coordinator.mode_config.load_or_default()
        coordinator.open_source(record)
        snapshot = coordinator.backups.snapshot(coordinator.prefixes, record.mode)
    except ManualUnsealRequiredError as e:
        print(f"Error: {e}", file=sys.stderr)
        _print_remediation(e.instructions)
        return EXIT_FAILED
    except VaultModeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED

    print(f"Snapshot created: {snapshot.snapshot_id}")
    print(f"  Entries: {snapshot.entry_count}")
    if snapshot.omitted_paths:
        print(f"  WARNING: {len(snapshot.omitted_paths)} path(s) could not be read:")
        for path in snapshot.omitted_paths:
            print(f"    - {path}")
    return EXIT_OK


def cmd_backup_list(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """List snapshots, newest first."""
    snapshot_ids = coordinator.backups.list_snapshots()
    if not snapshot_ids:
        print("No snapshots found.")
        return EXIT_OK

    print(f"\n{'Snapshot ID':<36} {'Source':<11} {'Entries':>7}  Complete")
    print("-" * 66)
    for snapshot_id in snapshot_ids:
        try:
            snap = coordinator.backups.read_metadata(snapshot_id)
        except VaultModeError:
            print(f"{snapshot_id:<36} {'?':<11} {'?':>7}  CORRUPT")
            continue
        print(
            f"{snap.snapshot_id:<36} "
            f"{snap.source_mode.value:<11} "
            f"{snap.entry_count:>7}  "
            f"{'yes' if snap.is_complete else 'no'}"
        )
    return EXIT_OK


def cmd_restore(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Replay a snapshot into the running store (rollback)."""
    if not args.yes:
        answer = _prompt(
            f"Restore {args.snapshot_id}? Existing secrets at the same paths will be "
            "overwritten. Type 'yes' to continue: "
        )
        if answer.lower() != "yes":
            print("Restore cancelled.")
            return EXIT_OK

    with cancel_on_sigint() as cancel_event:
        try:
            record = coordinator.mode_config.load_or_default()
            coordinator.open_source(record)
            count = coordinator.backups.restore(args.snapshot_id, cancel_event)
        except OperationCancelledError as e:
            print(f"Restore cancelled after {e.completed} write(s).")
            print(f"Re-run to finish: python scripts/vault_mode.py restore {args.snapshot_id} --yes")
            return EXIT_FAILED
        except ManualUnsealRequiredError as e:
            print(f"Error: {e}", file=sys.stderr)
            _print_remediation(e.instructions)
            return EXIT_FAILED
        except VaultModeError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED

    print(f"Restored {count} secret(s) from {args.snapshot_id}")
    return EXIT_OK


def cmd_prune(args: argparse.Namespace, coordinator: MigrationCoordinator) -> int:
    """Delete all but the newest snapshots."""
    keep = args.keep if args.keep is not None else coordinator.retention
    removed = coordinator.backups.prune(keep)
    print(f"Removed {len(removed)} snapshot(s), kept up to {keep}.")
    for snapshot_id in removed:
        print(f"  - {snapshot_id}")
    return EXIT_OK


# =============================================================================
# Entry point
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vault storage mode management",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command")

    status_parser = subparsers.add_parser("status", help="Show mode, seal state and findings")
    status_parser.add_argument("--json", action="store_true", help="Machine-readable output")

    switch_parser = subparsers.add_parser("switch", help="Switch storage mode")
    switch_parser.add_argument("mode", choices=[m.value for m in StorageMode], help="Target mode")
    switch_parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Do not prompt; migrate secrets unless --no-migrate",
    )
    switch_parser.add_argument(
        "--auto-unseal",
        type=parse_bool,
        default=None,
        metavar="true|false",
        help="Unseal from the key file on start (persistent mode)",
    )
    switch_parser.add_argument("--no-migrate", action="store_true", help="Switch without migrating")
    switch_parser.add_argument("--confirm", help="Confirmation text for --no-migrate ('yes')")
    switch_parser.add_argument(
        "--allow-incomplete-backup",
        action="store_true",
        help="Proceed when some secrets could not be read",
    )

    subparsers.add_parser("unseal", help="Initialize/unseal the persistent store from the key file")

    backup_parser = subparsers.add_parser("backup", help="Snapshot operations")
    backup_subparsers = backup_parser.add_subparsers(dest="backup_cmd", help="Backup command")
    backup_subparsers.add_parser("create", help="Create snapshot")
    backup_subparsers.add_parser("list", help="List snapshots")

    restore_parser = subparsers.add_parser("restore", help="Restore a snapshot (rollback)")
    restore_parser.add_argument("snapshot_id", help="Snapshot ID (see: backup list)")
    restore_parser.add_argument("--yes", action="store_true", help="Do not prompt")

    prune_parser = subparsers.add_parser("prune", help="Apply snapshot retention")
    prune_parser.add_argument("--keep", type=int, default=None, help="Snapshots to keep")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_USAGE
    if args.command == "backup" and not args.backup_cmd:
        print("Error: backup requires a subcommand (create or list)", file=sys.stderr)
        return EXIT_USAGE
    if args.command == "prune" and args.keep is not None and args.keep < 0:
        print("Error: --keep must be >= 0", file=sys.stderr)
        return EXIT_USAGE

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE
    configure_logging(tool_name="vault_mode", log_level=settings.log_level, stream=sys.stderr)
    coordinator = build_coordinator(settings)

    handlers = {
        "status": cmd_status,
        "switch": cmd_switch,
        "unseal": cmd_unseal,
        "restore": cmd_restore,
        "prune": cmd_prune,
    }
    if args.command == "backup":
        handler = cmd_backup_create if args.backup_cmd == "create" else cmd_backup_list
    else:
        handler = handlers[args.command]

    with OperationContext():
        try:
            return handler(args, coordinator)
        finally:
            coordinator.client.close()


if __name__ == "__main__":
    sys.exit(main())
