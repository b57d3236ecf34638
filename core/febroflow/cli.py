"""
Command-line interface for febroflow.

Usage:
    febroflow run greeter --flows flows/ --input '{"text": "hi"}' --context chat-42
    febroflow continue exec_20260101_120000_ab12cd34 --flows flows/ --input '{"text": "yes"}'
    febroflow state exec_20260101_120000_ab12cd34
    febroflow history greeter
    febroflow cancel exec_20260101_120000_ab12cd34
    febroflow validate flows/greeter.json
    febroflow node-types

Execution states are kept under --storage (default ~/.febroflow/storage), so
a run started by one invocation can be inspected or continued by the next.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from febroflow.config import EngineConfig
from febroflow.errors import FlowEngineError
from febroflow.graph.executor import FlowEngine
from febroflow.graph.flow import FlowDefinition
from febroflow.graph.node_types import list_node_types
from febroflow.graph.validator import validate_flow, validate_for_activation
from febroflow.nodes import build_default_registry
from febroflow.observability import configure_logging
from febroflow.services.credentials import EnvCredentialResolver
from febroflow.services.messaging import TelegramMessageSender
from febroflow.storage import FileExecutionStore, FileFlowRepository, InMemoryFlowRepository

logger = logging.getLogger(__name__)


def _parse_input(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("--input must be a JSON object")
    return value


def _build_engine(args: argparse.Namespace, flows_dir: str | None = None) -> FlowEngine:
    config = EngineConfig()
    if args.storage:
        config.storage_path = Path(args.storage)

    flows = FileFlowRepository(flows_dir) if flows_dir else InMemoryFlowRepository()
    registry = build_default_registry(
        message_sender=TelegramMessageSender(),
        file_base_dir=config.file_base_dir,
    )
    return FlowEngine(
        flow_repository=flows,
        execution_store=FileExecutionStore(config.storage_path),
        registry=registry,
        config=config,
        credential_resolver=EnvCredentialResolver(),
    )


def _print_state(state) -> None:
    print(state.model_dump_json(indent=2))


# === COMMANDS ===


def cmd_run(args: argparse.Namespace) -> int:
    engine = _build_engine(args, args.flows)
    input_data = _parse_input(args.input)

    async def _run():
        execution_id = await engine.execute_flow(args.flow_id, args.context, input_data)
        return await engine.get_execution_state(execution_id)

    _print_state(asyncio.run(_run()))
    return 0


def cmd_continue(args: argparse.Namespace) -> int:
    engine = _build_engine(args, args.flows)
    state = asyncio.run(engine.continue_flow(args.execution_id, _parse_input(args.input)))
    _print_state(state)
    return 0


def cmd_state(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    _print_state(asyncio.run(engine.get_execution_state(args.execution_id)))
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    states = asyncio.run(engine.get_execution_history(args.flow_id, limit=args.limit))
    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in states], indent=2))
        return 0

    if not states:
        print(f"No executions for flow '{args.flow_id}'")
        return 0
    for state in states:
        active = "*" if state.is_active else " "
        print(
            f"{active} {state.id}  {state.status.value:<12} "
            f"{state.started_at.isoformat()}  context={state.context_id or '-'}"
        )
    return 0


def cmd_cancel(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    _print_state(asyncio.run(engine.cancel_flow_execution(args.execution_id)))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    definition = FlowDefinition.from_file(args.flow_file)
    report = validate_flow(definition) if args.lenient else validate_for_activation(definition)

    for error in report.errors:
        print(f"✗ {error}")
    for warning in report.warnings:
        print(f"⚠ {warning}")
    if report.ok:
        print(f"✓ Flow '{definition.flow.id}' is valid ({len(definition.nodes)} nodes)")
        return 0
    return 1


def cmd_node_types(args: argparse.Namespace) -> int:
    infos = list_node_types()
    if args.json:
        print(json.dumps([info.to_dict() for info in infos], indent=2))
        return 0

    for info in infos:
        print(f"{info.type.value:<24} {info.category:<18} {info.description}")
    return 0


# === PARSER ===


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="febroflow",
        description="FebroFlow - run and inspect flow executions",
    )
    parser.add_argument("--storage", help="Execution state directory")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a flow")
    run_parser.add_argument("flow_id")
    run_parser.add_argument("--flows", required=True, help="Directory of flow JSON files")
    run_parser.add_argument("--input", help="Input data as a JSON object")
    run_parser.add_argument("--context", default="", help="Context id (conversation/session)")
    run_parser.set_defaults(func=cmd_run)

    continue_parser = subparsers.add_parser("continue", help="Resume a waiting or paused execution")
    continue_parser.add_argument("execution_id")
    continue_parser.add_argument("--flows", required=True, help="Directory of flow JSON files")
    continue_parser.add_argument("--input", help="Additional input as a JSON object")
    continue_parser.set_defaults(func=cmd_continue)

    state_parser = subparsers.add_parser("state", help="Show an execution's state")
    state_parser.add_argument("execution_id")
    state_parser.set_defaults(func=cmd_state)

    history_parser = subparsers.add_parser("history", help="List executions of a flow")
    history_parser.add_argument("flow_id")
    history_parser.add_argument("--limit", type=int, default=None)
    history_parser.add_argument("--json", action="store_true", help="Output as JSON")
    history_parser.set_defaults(func=cmd_history)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an execution")
    cancel_parser.add_argument("execution_id")
    cancel_parser.set_defaults(func=cmd_cancel)

    validate_parser = subparsers.add_parser("validate", help="Validate a flow definition file")
    validate_parser.add_argument("flow_file")
    validate_parser.add_argument(
        "--lenient",
        action="store_true",
        help="Allow zero or several entry nodes (report them as warnings)",
    )
    validate_parser.set_defaults(func=cmd_validate)

    types_parser = subparsers.add_parser("node-types", help="List the node type catalog")
    types_parser.add_argument("--json", action="store_true", help="Output as JSON")
    types_parser.set_defaults(func=cmd_node_types)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    try:
        return args.func(args)
    except FlowEngineError as e:
        print(f"Error: {e}", file=sys.stderr)
        for note in getattr(e, "__notes__", []):
            print(f"  {note}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
