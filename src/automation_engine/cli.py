"""CLI entrypoint for managing workflows and intents.

The CLI only touches stored definitions and learned intents. Running
workflows needs tool and agent implementations, which are supplied by the
host application embedding :class:`automation_engine.engine.AutomationEngine`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from automation_engine import __version__
from automation_engine.config import EngineSettings
from automation_engine.logging import configure_logging
from automation_engine.workflow.intents import IntentEngine
from automation_engine.workflow.models import UserIntent, Workflow
from automation_engine.workflow.store import JsonListFile, WorkflowStore
from automation_engine.workflow.templates import get_templates, template_definition
from automation_engine.workflow.ticker import AsyncioTicker

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automation",
        description="Manage stored workflow automations and learned intents",
    )
    parser.add_argument(
        "--version", action="version", version=f"automation-engine {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-workflows", help="List stored workflows")

    create = subparsers.add_parser(
        "create-workflow", help="Create a workflow from a JSON definition file"
    )
    create.add_argument("--file", required=True, type=Path, help="Path to the JSON definition")

    delete = subparsers.add_parser("delete-workflow", help="Delete a stored workflow")
    delete.add_argument("--id", dest="workflow_id", required=True, help="Workflow id")

    enable = subparsers.add_parser("enable-workflow", help="Enable a stored workflow")
    enable.add_argument("--id", dest="workflow_id", required=True, help="Workflow id")

    disable = subparsers.add_parser("disable-workflow", help="Disable a stored workflow")
    disable.add_argument("--id", dest="workflow_id", required=True, help="Workflow id")

    subparsers.add_parser("templates", help="List built-in workflow templates")

    install = subparsers.add_parser(
        "install-template", help="Create a (disabled) workflow from a built-in template"
    )
    install.add_argument("--id", dest="template_id", required=True, help="Template id")

    learn = subparsers.add_parser("learn-intent", help="Learn or reinforce an intent")
    learn.add_argument("--message", required=True, help="User utterance")
    learn.add_argument("--action", required=True, help="Action label for the intent")
    learn.add_argument(
        "--workflow", default=None, help="Optional workflow id to bind the intent to"
    )

    match = subparsers.add_parser("match-intent", help="Match an utterance against intents")
    match.add_argument("--message", required=True, help="User utterance")

    subparsers.add_parser("list-intents", help="List learned intents")

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _summary(workflow: Workflow) -> dict[str, object]:
    return {
        "id": workflow.id,
        "name": workflow.name,
        "trigger": workflow.trigger.type.value,
        "enabled": workflow.enabled,
        "steps": len(workflow.steps),
        "run_count": workflow.run_count,
        "success_count": workflow.success_count,
    }


def _intent_engine(settings: EngineSettings) -> IntentEngine:
    async def _no_dispatch(workflow_id: str) -> None:
        raise RuntimeError(f"Cannot run workflow {workflow_id} from the CLI")

    engine = IntentEngine(
        file=JsonListFile(settings.intents_file, UserIntent),
        dispatch=_no_dispatch,
        ticker=AsyncioTicker(),
        settings=settings,
    )
    engine.load()
    return engine


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level)

    try:
        store = WorkflowStore(JsonListFile(settings.workflows_file, Workflow))
        store.load()

        if args.command == "list-workflows":
            _print_json([_summary(w) for w in store.list()])
            return 0

        if args.command == "create-workflow":
            definition = json.loads(args.file.read_text(encoding="utf-8"))
            workflow = store.create(**definition)
            print(f"Created workflow {workflow.id}: {workflow.name}")
            return 0

        if args.command == "delete-workflow":
            if not store.delete(args.workflow_id):
                print(f"Workflow {args.workflow_id} not found", file=sys.stderr)
                return 2
            _intent_engine(settings).forget_workflow(args.workflow_id)
            print(f"Deleted workflow {args.workflow_id}")
            return 0

        if args.command in {"enable-workflow", "disable-workflow"}:
            enabled = args.command == "enable-workflow"
            if store.update(args.workflow_id, enabled=enabled) is None:
                print(f"Workflow {args.workflow_id} not found", file=sys.stderr)
                return 2
            print(f"Workflow {args.workflow_id} {'enabled' if enabled else 'disabled'}")
            return 0

        if args.command == "templates":
            _print_json(
                [{**_summary(t), "description": t.description} for t in get_templates()]
            )
            return 0

        if args.command == "install-template":
            fields = template_definition(args.template_id)
            if fields is None:
                print(f"Template {args.template_id} not found", file=sys.stderr)
                return 2
            workflow = store.create(**fields)
            print(f"Installed template {args.template_id} as {workflow.id}")
            return 0

        if args.command == "learn-intent":
            if args.workflow is not None and store.get(args.workflow) is None:
                print(f"Workflow {args.workflow} not found", file=sys.stderr)
                return 2
            intent = _intent_engine(settings).learn(
                args.message, args.action, workflow=args.workflow
            )
            _print_json(intent.model_dump(mode="json"))
            return 0

        if args.command == "match-intent":
            match = _intent_engine(settings).match(args.message)
            if match is None:
                print("No matching intent")
                return 0
            _print_json({"score": match.score, "intent": match.intent.model_dump(mode="json")})
            return 0

        if args.command == "list-intents":
            _print_json([i.model_dump(mode="json") for i in _intent_engine(settings).list()])
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
