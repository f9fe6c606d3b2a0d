#!/usr/bin/env python3
"""Programmatic expert run example.

This demonstrates using the runtime directly instead of through the CLI:

* load settings from `.env`
* bind the expert's required tools to MCP servers
* activate the expert (validate, compile, register triggers)
* run one process and report whether it paused for approval

The expert must already be installed under `<data_dir>/experts/<name>/`.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Sequence

from expert_runtime.bindings import ToolBinding
from expert_runtime.errors import ActivationBlocked
from expert_runtime.runtime import ExpertRuntime, RuntimeSettings
from expert_runtime.runtime.logging import configure_logging
from expert_runtime.spec.validator import render_report


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Activate an expert and run one process.")
    parser.add_argument("--expert", required=True, help="Installed expert name")
    parser.add_argument("--process", required=True, help="Process to run")
    parser.add_argument(
        "--bind",
        action="append",
        default=[],
        metavar="TOOL=SERVER",
        help='Bind a required tool to an MCP server, e.g. "crm=hubspot-mcp" (repeatable)',
    )
    parser.add_argument("--payload", default="{}", help="JSON object passed to the workflow")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, runtime: ExpertRuntime) -> int:
    await runtime.boot()

    for spec in args.bind:
        tool, _, server = spec.partition("=")
        print(await runtime.bind(args.expert, tool, ToolBinding(type="mcp", server=server)))

    try:
        report = await runtime.activate(args.expert)
    except ActivationBlocked as exc:
        print(str(exc))
        print(render_report((await runtime.validate(args.expert)).findings))
        return 1
    print(report.render())

    outcome = await runtime.run(args.expert, args.process, json.loads(args.payload))
    print(outcome.describe())
    if outcome.paused:
        print(f"Approve with: expert-runtime approve {outcome.request_id}")
    return 0 if outcome.ok or outcome.paused else 1


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = RuntimeSettings()
    configure_logging(settings.log_level)

    return asyncio.run(_run(args, ExpertRuntime(settings)))


if __name__ == "__main__":
    raise SystemExit(main())
