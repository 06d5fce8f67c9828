"""CLI for URL Trust Scanner operations."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import TypeAdapter, ValidationError

from . import aggregator, classifier, scoring
from .models import NetworkRequestRecord, ScanResult
from .policy import PolicyError, RiskPolicy, default_policy, load_policy

LOG_LEVEL_ENV = "TRUSTSCAN_LOG_LEVEL"

_RECORDS = TypeAdapter(list[NetworkRequestRecord])

USAGE = """Usage: python -m trustscan.cli <command> [args] [--policy <path>]
Commands:
  classify <url> <origin_domain> [resource_type] - Classify one request
  aggregate <requests.json> <origin_domain>       - Summarize a sandbox request set
  score <scan.json>                               - Score a scan result
  serve [host] [port]                             - Start the HTTP service"""


def _configure_logging() -> None:
    level_name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
        format="[trustscan] %(levelname)s %(name)s: %(message)s",
    )


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _read_json(path: str):
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        print(f"Error: cannot read {path}: {exc}")
        sys.exit(1)
    except json.JSONDecodeError as exc:
        print(f"Error: {path} is not valid JSON: {exc}")
        sys.exit(1)


def classify(url: str, origin_domain: str, resource_type: str, policy: RiskPolicy) -> None:
    """
    Classify a single request URL.

    Args:
        url: Request URL
        origin_domain: Hostname of the scanned site
        resource_type: Browser resource type (script, xhr, fetch...)
        policy: Policy to apply
    """
    try:
        domain = urlsplit(url).hostname or ""
    except ValueError:
        domain = ""
    record = NetworkRequestRecord(url=url, domain=domain, resource_type=resource_type)
    result = classifier.classify(record, origin_domain, policy)
    _emit(result.model_dump(mode="json", by_alias=True))


def aggregate(path: str, origin_domain: str, policy: RiskPolicy) -> None:
    """
    Classify and summarize a JSON list of sandbox requests.

    Args:
        path: JSON file with a list of request records
        origin_domain: Hostname of the scanned site
        policy: Policy to apply
    """
    records = _RECORDS.validate_python(_read_json(path))
    analysis = aggregator.aggregate(records, origin_domain, policy)
    _emit(analysis.model_dump(mode="json", by_alias=True))


def score(path: str, policy: RiskPolicy) -> None:
    """
    Score a scan result JSON file.

    Args:
        path: JSON file with {url, checks}
        policy: Policy to apply
    """
    result = ScanResult.model_validate(_read_json(path))
    report = scoring.explain(result, policy)
    payload = report.model_dump(mode="json", by_alias=True)
    payload["verdict"] = scoring.verdict_for(report.score)
    _emit(payload)


def serve(host: str = "127.0.0.1", port: int = 8000):
    """
    Start the HTTP service.

    Args:
        host: Host to bind to (default: 127.0.0.1)
        port: Port to bind to (default: 8000)
    """
    import uvicorn

    from .gateway import app

    print(f"Starting URL Trust Scanner on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


def _parse_policy(args: list[str]) -> tuple[list[str], RiskPolicy]:
    if "--policy" not in args:
        return args, default_policy()
    idx = args.index("--policy")
    if idx + 1 >= len(args):
        print("Error: --policy requires a value")
        sys.exit(1)
    try:
        policy = load_policy(args[idx + 1])
    except PolicyError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    return args[:idx] + args[idx + 2 :], policy


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    _configure_logging()
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        print(USAGE)
        sys.exit(1)

    command = argv[0]
    args, policy = _parse_policy(argv[1:])

    try:
        if command == "classify":
            if len(args) not in (2, 3):
                print("Usage: python -m trustscan.cli classify <url> <origin_domain> [resource_type]")
                sys.exit(1)
            classify(args[0], args[1], args[2] if len(args) > 2 else "other", policy)
        elif command == "aggregate":
            if len(args) != 2:
                print("Usage: python -m trustscan.cli aggregate <requests.json> <origin_domain>")
                sys.exit(1)
            aggregate(args[0], args[1], policy)
        elif command == "score":
            if len(args) != 1:
                print("Usage: python -m trustscan.cli score <scan.json>")
                sys.exit(1)
            score(args[0], policy)
        elif command == "serve":
            host = args[0] if args else "127.0.0.1"
            try:
                port = int(args[1]) if len(args) > 1 else 8000
            except ValueError:
                print("Error: port must be an integer")
                sys.exit(1)
            serve(host, port)
        else:
            print(f"Unknown command: {command}")
            print(USAGE)
            sys.exit(1)
    except ValidationError as exc:
        print(f"Error: invalid input: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
