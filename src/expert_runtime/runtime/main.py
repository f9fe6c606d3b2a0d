"""CLI entrypoint for the expert runtime."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from pydantic import ValidationError

from expert_runtime import __version__
from expert_runtime.bindings import ToolBinding
from expert_runtime.errors import ExpertRuntimeError
from expert_runtime.learning import LearningProposal
from expert_runtime.runtime.config import RuntimeSettings
from expert_runtime.runtime.logging import configure_logging
from expert_runtime.runtime.service import ExpertRuntime
from expert_runtime.spec.validator import render_report
from expert_runtime.workflow.executor import RunOutcome

logger = logging.getLogger(__name__)


def _parse_mapping(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``op=name`` arguments."""

    mapping: dict[str, str] = {}
    for value in values or []:
        key, sep, mapped = value.partition("=")
        if not sep or not key.strip() or not mapped.strip():
            raise ValueError(f"Expected op=name, got '{value}'")
        mapping[key.strip()] = mapped.strip()
    return mapping


def _parse_payload(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    parsed = json.loads(value)
    if not isinstance(parsed, dict):
        raise ValueError("--payload must be a JSON object")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expert-runtime",
        description="Validate, activate and run expert packages",
    )
    parser.add_argument("--version", action="version", version=f"expert-runtime {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List installed experts")

    validate = subparsers.add_parser("validate", help="Validate an expert package and its bindings")
    validate.add_argument("expert", help="Expert name")

    bind = subparsers.add_parser("bind", help="Bind a required tool to an MCP server or a skill")
    bind.add_argument("expert", help="Expert name")
    bind.add_argument("tool", help="Tool name declared under requires.tools")
    target = bind.add_mutually_exclusive_group(required=True)
    target.add_argument("--mcp", dest="server", default=None, help="MCP server name")
    target.add_argument("--skill", default=None, help="Skill name")
    bind.add_argument(
        "--map",
        action="append",
        default=None,
        metavar="OP=NAME",
        help="Rename an operation for this target (repeatable)",
    )
    bind.add_argument(
        "--alias",
        action="append",
        default=None,
        metavar="OP=NAME",
        help="Extra name to try for an operation (repeatable)",
    )

    wizard = subparsers.add_parser("bind-wizard", help="Suggest bindings for unbound tools")
    wizard.add_argument("expert", help="Expert name")

    activate = subparsers.add_parser(
        "activate", help="Validate, compile workflows and register triggers"
    )
    activate.add_argument("expert", help="Expert name")

    run = subparsers.add_parser("run", help="Run a compiled process")
    run.add_argument("expert", help="Expert name")
    run.add_argument("process", help="Process name")
    run.add_argument("--payload", default=None, help="JSON object passed as workflow input")

    subparsers.add_parser("approvals", help="List pending approval requests")

    approve = subparsers.add_parser("approve", help="Approve a pending request")
    approve.add_argument("request_id", help="Approval request id")

    reject = subparsers.add_parser("reject", help="Reject a pending request")
    reject.add_argument("request_id", help="Approval request id")

    learn = subparsers.add_parser("learn", help="Propose a learning for an expert")
    learn.add_argument("expert", help="Expert name")
    learn.add_argument("--title", required=True, help="Short title of the learning")
    learn.add_argument("--observation", required=True, help="What was observed")
    learn.add_argument("--correction", required=True, help="What to do instead")
    learn.add_argument("--source", default="cli", help="Where the learning came from")
    learn.add_argument("--scope", default="package", help="Learning scope (default: package)")
    learn.add_argument(
        "--confidence", choices=("high", "medium", "low"), default="medium", help="Confidence"
    )

    learn_approve = subparsers.add_parser(
        "learn-approve", help="Apply a pending learning proposal"
    )
    learn_approve.add_argument("request_id", help="Approval request id")

    subparsers.add_parser("doctor", help="Check runtime paths, host capabilities and workflows")
    subparsers.add_parser("setup", help="Enable the host capabilities compiled workflows need")

    return parser


def _print_outcome(outcome: RunOutcome, verb: str) -> int:
    if outcome.paused:
        print(outcome.describe())
        return 0
    if outcome.ok:
        print(outcome.output or f"{verb} complete.")
        return 0
    print(f"{verb} failed: {outcome.error}", file=sys.stderr)
    return 1


async def _dispatch(args: argparse.Namespace, runtime: ExpertRuntime) -> int:
    await runtime.boot()

    if args.command == "list":
        summaries = await runtime.list_experts()
        print("\n".join(s.render() for s in summaries) if summaries else "No experts installed.")
        return 0

    if args.command == "validate":
        result = await runtime.validate(args.expert)
        print(render_report(result.findings))
        return 0 if result.ok else 1

    if args.command == "bind":
        binding = ToolBinding(
            type="mcp" if args.server else "skill",
            server=args.server,
            skill=args.skill,
            operations=_parse_mapping(args.map),
            aliases=_parse_mapping(args.alias),
        )
        print(await runtime.bind(args.expert, args.tool, binding))
        return 0

    if args.command == "bind-wizard":
        print(await runtime.binding_wizard(args.expert))
        return 0

    if args.command == "activate":
        report = await runtime.activate(args.expert)
        print(report.render())
        return 0

    if args.command == "run":
        outcome = await runtime.run(args.expert, args.process, _parse_payload(args.payload))
        return _print_outcome(outcome, "Run")

    if args.command == "approvals":
        pending = await runtime.pending_approvals()
        if not pending:
            print("No pending approvals.")
        for request in pending:
            print(
                f"- {request.id} expert={request.expert_name} operation={request.operation} "
                f"tier={request.tier} reason={request.reason}"
            )
        return 0

    if args.command == "approve":
        return _print_outcome(await runtime.approve(args.request_id), "Approval")

    if args.command == "reject":
        return _print_outcome(await runtime.reject(args.request_id), "Reject")

    if args.command == "learn":
        proposal = LearningProposal(
            title=args.title,
            observation=args.observation,
            correction=args.correction,
            source=args.source,
            scope=args.scope,
            confidence=args.confidence,
        )
        print(await runtime.propose_learning(args.expert, proposal))
        return 0

    if args.command == "learn-approve":
        print(await runtime.apply_learning(args.request_id))
        return 0

    if args.command == "doctor":
        print(await runtime.doctor())
        return 0

    if args.command == "setup":
        print(await runtime.setup())
        return 0

    logger.error("Unknown command", extra={"command": args.command})
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = RuntimeSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)

    try:
        return asyncio.run(_dispatch(args, ExpertRuntime(settings)))

    except (ExpertRuntimeError, ValueError) as e:
        logger.warning(str(e), extra={"command": args.command})
        print(str(e), file=sys.stderr)
        return 1

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
