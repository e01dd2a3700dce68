from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from .config import TriggerConfigError, TriggersConfig, load_triggers_config
from .emitter import EmissionError
from .runner import TriggerRunner, watch
from .state import JsonFileStateStore, StateStoreError

_LOG = logging.getLogger(__name__)


def _load_config(path: str) -> TriggersConfig:
    config_path = Path(path).expanduser().resolve()
    try:
        return load_triggers_config(config_path)
    except TriggerConfigError as exc:
        raise SystemExit(f"Trigger config error: {exc}") from exc


def _state_store(args: argparse.Namespace, config: TriggersConfig) -> JsonFileStateStore:
    state_dir = Path(args.state_dir).expanduser().resolve() if args.state_dir else config.state_dir
    return JsonFileStateStore(state_dir)


def _build_runners(args: argparse.Namespace, config: TriggersConfig) -> List[TriggerRunner]:
    store = _state_store(args, config)
    workdir = Path(args.workdir).expanduser().resolve() if args.workdir else Path.cwd()
    triggers = config.triggers
    if getattr(args, "trigger", None):
        try:
            triggers = [config.get(args.trigger)]
        except TriggerConfigError as exc:
            raise SystemExit(str(exc)) from exc
    return [TriggerRunner.from_config(trigger, store, workdir=workdir) for trigger in triggers]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Poll workspace resources and fire workflow executions")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--config", required=True, help="Path to trigger configuration YAML file")
        sub.add_argument("--state-dir", help="Override the state directory from the config file")

    # Poll subcommand
    poll_parser = subparsers.add_parser("poll", help="Run one poll cycle for each trigger")
    add_common(poll_parser)
    poll_parser.add_argument("--trigger", help="Only poll the trigger with this id")
    poll_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would fire without executing or saving state",
    )
    poll_parser.add_argument(
        "--workdir",
        help="Working directory for trigger scripts (default: current directory)",
    )

    # Watch subcommand
    watch_parser = subparsers.add_parser("watch", help="Poll every trigger on its interval until interrupted")
    add_common(watch_parser)
    watch_parser.add_argument("--trigger", help="Only watch the trigger with this id")
    watch_parser.add_argument(
        "--workdir",
        help="Working directory for trigger scripts (default: current directory)",
    )

    # Validate subcommand
    validate_parser = subparsers.add_parser("validate", help="Validate the trigger configuration")
    validate_parser.add_argument("--config", required=True, help="Path to trigger configuration YAML file")

    # State subcommands
    state_parser = subparsers.add_parser("state", help="Inspect or reset persisted trigger state")
    state_subparsers = state_parser.add_subparsers(dest="state_command", required=True)
    show_parser = state_subparsers.add_parser("show", help="Print persisted state as JSON")
    add_common(show_parser)
    show_parser.add_argument("--trigger", help="Trigger id (default: all triggers)")
    reset_parser = state_subparsers.add_parser("reset", help="Forget cursor and seen items of a trigger")
    add_common(reset_parser)
    reset_parser.add_argument("--trigger", required=True, help="Trigger id")

    # Serve subcommand
    serve_parser = subparsers.add_parser("serve", help="Serve the read-only status API")
    add_common(serve_parser)
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port (default: 8080)")

    return parser


def poll_from_args(args: argparse.Namespace) -> int:
    """Handle the poll subcommand.

    Returns:
        Exit code: 0 on success, 1 if any trigger failed permanently, could
        not emit or could not persist its state.
    """
    config = _load_config(args.config)
    runners = _build_runners(args, config)

    fired_count = 0
    failed_count = 0
    for runner in runners:
        trigger_id = runner.config.id
        _LOG.info("Polling trigger %s (%s)...", trigger_id, runner.config.provider)
        try:
            outcome = runner.run_once(dry_run=args.dry_run)
        except EmissionError as exc:
            failed_count += 1
            _LOG.error("Emission failed for %s, state not saved: %s", trigger_id, exc)
            continue
        except StateStoreError as exc:
            failed_count += 1
            _LOG.error("State store failure for %s: %s", trigger_id, exc)
            continue

        if outcome.fired:
            fired_count += 1
        if outcome.result.permanent_errors:
            failed_count += 1

    if args.dry_run:
        _LOG.info("Dry run complete. No actions taken.")
    else:
        _LOG.info("Poll complete. Fired: %d, Failed: %d", fired_count, failed_count)
    return 1 if failed_count else 0


def watch_from_args(args: argparse.Namespace) -> int:
    """Handle the watch subcommand."""
    config = _load_config(args.config)
    runners = _build_runners(args, config)
    _LOG.info("Watching %d trigger(s). Press Ctrl+C to stop.", len(runners))
    try:
        watch(runners)
    except KeyboardInterrupt:
        _LOG.info("Stopped.")
    return 0


def validate_from_args(args: argparse.Namespace) -> int:
    """Handle the validate subcommand."""
    config = _load_config(args.config)
    for trigger in config.triggers:
        print(
            f"{trigger.id}: provider={trigger.provider} resources={','.join(trigger.resources)} "
            f"interval={int(trigger.interval.total_seconds())}s max_items_per_poll={trigger.max_items_per_poll}"
        )
    print(f"{len(config.triggers)} trigger(s) valid")
    return 0


def state_from_args(args: argparse.Namespace) -> int:
    """Handle the state show/reset subcommands."""
    config = _load_config(args.config)
    store = _state_store(args, config)

    if args.state_command == "reset":
        store.reset(args.trigger)
        _LOG.info("Reset state of trigger %s", args.trigger)
        return 0

    trigger_ids = [args.trigger] if args.trigger else sorted(
        {trigger.id for trigger in config.triggers} | set(store.list_triggers())
    )
    try:
        document = {
            trigger_id: {
                "resources": store.load(trigger_id).to_dict(),
                "failures": store.load_failures(trigger_id),
            }
            for trigger_id in trigger_ids
        }
    except StateStoreError as exc:
        raise SystemExit(f"State error: {exc}") from exc
    print(json.dumps(document, indent=2))
    return 0


def serve_from_args(args: argparse.Namespace) -> int:
    """Handle the serve subcommand."""
    import uvicorn

    from .web import create_app

    config = _load_config(args.config)
    app = create_app(_state_store(args, config), config)
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    if args.command == "poll":
        exit_code = poll_from_args(args)
    elif args.command == "watch":
        exit_code = watch_from_args(args)
    elif args.command == "validate":
        exit_code = validate_from_args(args)
    elif args.command == "state":
        exit_code = state_from_args(args)
    elif args.command == "serve":
        exit_code = serve_from_args(args)
    else:  # pragma: no cover
        parser.error(f"Unknown command {args.command}")
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
