#!/usr/bin/env python3
"""Build a knowledge graph from a text file and print its events as JSON lines."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, TextIO

from backend.cognify.config import AppConfig, ConfigError, configure_logging, load_config
from backend.cognify.extraction import OpenAIChatClient
from backend.cognify.orchestration import GraphBuildOrchestrator

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments for the graph builder.

    Returns:
        argparse.Namespace: Parsed command line arguments.
    """
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", help="Text file to extract a graph from, or '-' for stdin")
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Request the whole model response at once instead of streaming it",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: repository config.yaml)",
    )
    return parser.parse_args(argv)


def read_text(path: str, stdin: Optional[TextIO] = None) -> str:
    if path == "-":
        return (stdin or sys.stdin).read()
    return Path(path).read_text(encoding="utf-8")


def run(orchestrator: GraphBuildOrchestrator, text: str, out: Optional[TextIO] = None) -> int:
    """Print every event of one graph build and return the exit status.

    Returns:
        int: ``0`` when the build completed, ``1`` when it ended with an error.
    """
    out = out or sys.stdout
    status = 1
    for event in orchestrator.build(text):
        record = {"event": event.kind, "data": event.to_payload()}
        print(json.dumps(record, ensure_ascii=False), file=out)
        if event.kind == "complete":
            status = 0
    return status


def _build_client(config: AppConfig) -> Optional[OpenAIChatClient]:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        LOGGER.error("OPENAI_API_KEY must be set to build graphs")
        return None
    return OpenAIChatClient(settings=config.extraction.openai, api_key=api_key)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the graph builder CLI.

    Returns:
        int: Exit status code where ``0`` indicates success.
    """
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    configure_logging(config)

    try:
        text = read_text(args.path)
    except OSError as exc:
        print(f"Unable to read {args.path}: {exc}", file=sys.stderr)
        return 2
    limit = config.graph.max_input_chars
    if len(text) > limit:
        print(f"Input exceeds the {limit} character limit ({len(text)} chars)", file=sys.stderr)
        return 2

    streaming = config.extraction.streaming and not args.batch
    client = _build_client(config)
    if client is None:
        return 2
    try:
        orchestrator = GraphBuildOrchestrator.from_config(
            config, client.source_factory(streaming=streaming)
        )
        return run(orchestrator, text)
    finally:
        client.close()


if __name__ == "__main__":
    raise SystemExit(main())
