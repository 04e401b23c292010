"""MCP server exposing the Spec Kit clarification loop."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from speckit_clarify.config import ClarifyConfig
from speckit_clarify.errors import ClarifyError
from speckit_clarify.session import ClarificationSession
from speckit_clarify.speckit_logging import setup_logging
from speckit_clarify.workflow import ClarificationWorkflow, active_sessions, lookup_session

mcp = FastMCP("speck-it-clarify")

workflow = ClarificationWorkflow()


@mcp.tool()
def start_clarification(root: Optional[str] = None) -> Dict[str, Any]:
    """Scan the active feature spec for ambiguities and ask the highest-impact question.

    The feature is discovered through the project's prerequisite script; run this
    after the spec exists and before generating a plan.
    """

    return workflow.start(root)


@mcp.tool()
def answer_question(feature_dir: str, answer: str) -> Dict[str, Any]:
    """Answer the outstanding clarification question.

    Reply with one option letter, a short answer (at most 5 words), or a stop
    signal such as "done" to end the session.
    """

    return workflow.answer(feature_dir, answer)


@mcp.tool()
def stop_clarification(feature_dir: str) -> Dict[str, Any]:
    """End a clarification session early and return its completion report."""

    return workflow.stop(feature_dir)


@mcp.tool()
def clarification_report(feature_dir: str) -> Dict[str, Any]:
    """Return coverage and progress for a live clarification session."""

    return workflow.report(feature_dir)


@mcp.tool()
def scan_coverage(root: Optional[str] = None) -> Dict[str, Any]:
    """Report taxonomy coverage of the active spec without asking anything."""

    return workflow.scan(root)


@mcp.resource("speck-it://clarifications")
def resource_clarifications() -> str:
    """Resource view listing clarification sessions that are still open."""

    keys = active_sessions()
    if not keys:
        return "No clarification sessions are active."

    lines = ["Speck-It Clarification Sessions"]
    for key in keys:
        session = lookup_session(key)
        if session is None:
            continue
        lines.append("")
        lines.append(f"- {session.feature_key}")
        if session.paths:
            lines.append(f"  Spec: {session.paths.spec_path}")
        lines.append(f"  Questions: {session.questions_answered}/{session.questions_asked} answered")
        if session.current is not None:
            lines.append(f"  Waiting on: {session.current.category}")

    return "\n".join(lines)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Speck-It clarification server")
    parser.add_argument("--interactive", action="store_true", help="run the clarification loop in this terminal")
    parser.add_argument("--root", help="project root (defaults to SPECKIT_PROJECT_ROOT or detection)")
    args = parser.parse_args(argv)

    if not args.interactive:
        log_file = os.getenv("SPECKIT_LOG_FILE")
        setup_logging(os.getenv("SPECKIT_LOG_LEVEL", "INFO").upper(), Path(log_file).expanduser() if log_file else None)
        mcp.run(transport="stdio")
        return 0

    try:
        config = ClarifyConfig.from_env(args.root)
        setup_logging(config.log_level, config.log_file)
        ClarificationSession(config).run_interactive(input)
    except ClarifyError as e:
        print(f"{e} {e.suggestion}".strip(), file=sys.stderr)
        return 1
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
