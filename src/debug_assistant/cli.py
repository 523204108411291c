"""Command-line interface for the debug assistant.

Provides offline subcommands for parsing model replies, inspecting and
moving a knowledge base stored in a JSON file, and printing rule-based fix
suggestions for an error message.  Output is JSON on stdout so it can be
piped into other tools.

Entry point
-----------
The ``main()`` function is registered as a console script in
``pyproject.toml``::

    [project.scripts]
    debug-assistant = "debug_assistant.cli:main"

Usage examples::

    debug-assistant parse reply.txt
    echo "[ACTION:click:Submit button]" | debug-assistant parse -
    debug-assistant kb --store kb.json search "element not found"
    debug-assistant suggest --error "Timeout 30000ms exceeded" --url https://example.com
    debug-assistant info
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

DEFAULT_STORE = "debug-assistant-kb.json"


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="debug-assistant",
        description="Debug assistant -- offline tools for replies, fixes and the knowledge base.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        default=False,
        help="Show version and exit.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. (default: WARNING)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON config file with optional knowledge_base / fix_generator sections.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available subcommands")

    # -- parse -------------------------------------------------------------
    parse_parser = subparsers.add_parser(
        "parse",
        help="Parse a model reply into actions and suggestions.",
    )
    parse_parser.add_argument("file", help="Reply text file, or '-' for stdin.")

    # -- kb ----------------------------------------------------------------
    kb_parser = subparsers.add_parser(
        "kb",
        help="Inspect or move a knowledge base.",
        description="Operate on a knowledge base persisted in a JSON file.",
    )
    kb_parser.add_argument(
        "--store",
        type=str,
        default=DEFAULT_STORE,
        help=f"Knowledge base file. (default: {DEFAULT_STORE})",
    )
    kb_sub = kb_parser.add_subparsers(dest="kb_command")
    kb_sub.add_parser("stats", help="Print entry counts and the most common patterns.")
    search_parser = kb_sub.add_parser("search", help="Rank entries against a query.")
    search_parser.add_argument("query")
    search_parser.add_argument("--limit", type=int, default=5)
    export_parser = kb_sub.add_parser("export", help="Print the store as [id, entry] pairs.")
    export_parser.add_argument("--output", type=str, default=None, help="Write to a file instead.")
    import_parser = kb_sub.add_parser("import", help="Merge an exported dump into the store.")
    import_parser.add_argument("file")

    # -- suggest -----------------------------------------------------------
    suggest_parser = subparsers.add_parser(
        "suggest",
        help="Print rule-based fix suggestions for an error message.",
    )
    suggest_parser.add_argument("--error", type=str, required=True, help="Error message.")
    suggest_parser.add_argument("--url", type=str, default="", help="Page URL at failure time.")
    suggest_parser.add_argument("--step", type=str, default="", help="Description of the failed step.")
    suggest_parser.add_argument(
        "--store",
        type=str,
        default=None,
        help="Also consult the knowledge base in this file.",
    )

    # -- info --------------------------------------------------------------
    subparsers.add_parser("info", help="Show version, action types and dependency status.")

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _load_sections(path: str | None) -> dict[str, Any]:
    if path is None:
        return {}
    from debug_assistant.infrastructure.config import load_config_from_json

    return load_config_from_json(Path(path).read_text(encoding="utf-8"))


def _open_kb(store: str, sections: dict[str, Any]) -> Any:
    from debug_assistant.infrastructure.knowledge_base import KnowledgeBase
    from debug_assistant.infrastructure.storage import JSONFileStorage

    return KnowledgeBase(sections.get("knowledge_base"), JSONFileStorage(store))


# =========================================================================
# Subcommand handlers
# =========================================================================

def _cmd_parse(args: argparse.Namespace) -> int:
    from debug_assistant.services.response_parser import ResponseParser

    if args.file == "-":
        text = sys.stdin.read()
    else:
        path = Path(args.file)
        if not path.exists():
            print(f"Error: file not found: {path}", file=sys.stderr)
            return 1
        text = path.read_text(encoding="utf-8")

    parsed = ResponseParser().parse(text)
    _print_json({
        "text": parsed.text,
        "actions": [a.to_dict() for a in parsed.actions],
        "suggestions": [s.to_dict() for s in parsed.suggestions],
        "contextRequest": (
            {"type": parsed.context_request.type, "details": parsed.context_request.details}
            if parsed.context_request is not None
            else None
        ),
        "confidence": parsed.confidence,
    })
    return 0


def _cmd_kb(args: argparse.Namespace) -> int:
    from debug_assistant.domain.exceptions import KnowledgeBaseImportError

    if args.kb_command is None:
        print("Error: kb needs one of stats, search, export, import", file=sys.stderr)
        return 1

    kb = _open_kb(args.store, args.sections)

    if args.kb_command == "stats":
        _print_json(kb.get_stats())
    elif args.kb_command == "search":
        _print_json([e.to_dict() for e in kb.find_matching_patterns(args.query, args.limit)])
    elif args.kb_command == "export":
        dump = kb.export_json()
        if args.output:
            Path(args.output).write_text(dump, encoding="utf-8")
            print(f"Exported {len(kb)} entries to {args.output}", file=sys.stderr)
        else:
            print(dump)
    elif args.kb_command == "import":
        path = Path(args.file)
        if not path.exists():
            print(f"Error: file not found: {path}", file=sys.stderr)
            return 1
        try:
            count = kb.import_json(path.read_text(encoding="utf-8"))
        except KnowledgeBaseImportError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
        _print_json({"imported": count, "total_entries": len(kb)})
    return 0


def _cmd_suggest(args: argparse.Namespace) -> int:
    from debug_assistant.domain.values import DebugContext, DebugError
    from debug_assistant.services.fix_generator import FixSuggestionGenerator, classify_error

    kb = _open_kb(args.store, args.sections) if args.store else None
    generator = FixSuggestionGenerator(kb, args.sections.get("fix_generator"))
    category = classify_error(args.error)
    context = DebugContext(
        url=args.url,
        last_error=DebugError(message=args.error, type=category),
        failed_step=args.step,
    )
    _print_json({
        "category": category.value,
        "suggestions": [s.to_dict() for s in generator.generate(context)],
    })
    return 0


def _cmd_info(args: argparse.Namespace) -> int:
    from debug_assistant import __version__
    from debug_assistant.domain.enums import ActionType, FixType

    dependencies: dict[str, str] = {}
    for pkg in ("numpy", "pydantic", "langchain_core", "httpx", "PIL", "anthropic"):
        try:
            mod = __import__(pkg)
            dependencies[pkg] = getattr(mod, "__version__", "installed")
        except ImportError:
            dependencies[pkg] = "missing"

    _print_json({
        "version": __version__,
        "action_types": [t.value for t in ActionType],
        "critical_actions": [t.value for t in ActionType if t.is_critical],
        "fix_types": [t.value for t in FixType],
        "dependencies": dependencies,
    })
    return 0


# =========================================================================
# Main entry point
# =========================================================================

def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parameters
    ----------
    argv:
        Command-line arguments.  Defaults to ``sys.argv[1:]``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version:
        from debug_assistant import __version__
        print(f"debug-assistant {__version__}")
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handlers: dict[str, Any] = {
        "parse": _cmd_parse,
        "kb": _cmd_kb,
        "suggest": _cmd_suggest,
        "info": _cmd_info,
    }

    try:
        args.sections = _load_sections(args.config)
        exit_code = handlers[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        exit_code = 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)
