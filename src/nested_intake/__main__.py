from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

import httpx
from dotenv import load_dotenv
from rich.console import Console

from .client import IntakeApiError, IntakeClient, content_type_for
from .config import Settings
from .errors import IntakeError, PersistError
from .logging_utils import setup_logging
from .pipeline import IntakeService
from .rules import RuleConfigError, load_rules

console = Console()
LOGGER = logging.getLogger("nested_intake.cli")

EXIT_CONFIG = 1
EXIT_PAYLOAD = 2
EXIT_TRANSPORT = 3
EXIT_UNEXPECTED = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nested-intake",
        description="Normalise external payloads into nested-creation form.",
    )
    parser.add_argument("--rules", help="Path to a mapping rules YAML file")
    parser.add_argument(
        "--strict", action="store_true", help="Reject fields not declared in the rules"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    for name, text in (
        ("map", "Print the mapped document for a payload file"),
        ("assemble", "Assemble a payload file and print the aggregate"),
    ):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("type_name", help="Aggregate type, e.g. user")
        cmd.add_argument("path", type=Path)
        cmd.add_argument("--content-type", help="Override the inferred content type")

    sub.add_parser("serve", help="Run the HTTP intake service")

    submit = sub.add_parser("submit", help="POST a payload file to a running service")
    submit.add_argument("collection", help="Resource collection, e.g. users")
    submit.add_argument("path", type=Path)
    submit.add_argument("--content-type", help="Override the inferred content type")
    return parser


def run_local(args: argparse.Namespace, settings: Settings) -> int:
    intake = settings.intake
    registry = load_rules(args.rules or intake.rules_path)
    service = IntakeService(registry, strict=args.strict or intake.strict)
    content_type = args.content_type or content_type_for(args.path)
    result = service.prepare(args.path.read_bytes(), content_type, args.type_name)
    if result.error is not None:
        report_error(result.error)
        return EXIT_PAYLOAD

    if args.command == "map":
        console.print_json(json.dumps(result.mapped))
        return 0

    aggregate = result.aggregate
    if aggregate is None:
        raise RuntimeError(f"Assembly of {args.type_name} returned no aggregate")
    console.print_json(json.dumps(aggregate.to_dict()))
    console.print(
        f"[green]{args.type_name}[/green] assembled with "
        f"{len(aggregate.entities()) - 1} child entities"
    )
    return 0


def run_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from .api import create_app

    if args.rules:
        settings = replace(settings, rules_path=args.rules)
    if args.strict:
        settings = replace(settings, strict=True)

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


async def run_submit(args: argparse.Namespace, settings: Settings) -> int:
    async with IntakeClient(settings.api) as client:
        created = await client.submit_file(args.collection, args.path, args.content_type)
    console.print_json(json.dumps(created))
    return 0


def report_error(error: IntakeError) -> None:
    LOGGER.error("%s: %s", error.code, error.message)
    location = f" at [bold]{error.field}[/bold]" if error.field else ""
    console.print(f"[red]{error.code}[/red]{location}: {error.message}", highlight=False)


def main(argv: Optional[Sequence[str]] = None) -> None:
    load_dotenv()
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    args = build_parser().parse_args(argv)

    try:
        if args.command in ("map", "assemble"):
            code = run_local(args, settings)
        elif args.command == "serve":
            code = run_serve(args, settings)
        else:
            code = asyncio.run(run_submit(args, settings))
    except (RuleConfigError, KeyError, ValueError, OSError) as exc:
        LOGGER.error("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)
    except IntakeApiError as exc:
        LOGGER.error("Intake service error: %s", exc)
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            sys.exit(EXIT_PAYLOAD)
        sys.exit(EXIT_TRANSPORT)
    except (PersistError, httpx.HTTPError) as exc:
        LOGGER.exception("Transport or storage failure")
        print(f"Failure: {exc}", file=sys.stderr)
        sys.exit(EXIT_TRANSPORT)
    except Exception as exc:  # pragma: no cover - guard for CLI usage
        LOGGER.exception("Intake failed")
        print(f"Intake failed: {exc}", file=sys.stderr)
        sys.exit(EXIT_UNEXPECTED)
    sys.exit(code)


if __name__ == "__main__":
    main()
