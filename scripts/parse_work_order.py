"""Parse a free-text work order from a file or stdin and print the result as JSON."""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config import settings
from src.extraction.orchestrator import EmptyInputError, build_orchestrator


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("file", nargs="?", help="Text file to parse (reads stdin if omitted)")
    parser.add_argument(
        "--heuristic-only",
        action="store_true",
        help="Skip the remote backends and use only the rule-based extractor",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log backend attempts")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.file:
        raw_text = Path(args.file).read_text(encoding="utf-8")
    else:
        raw_text = sys.stdin.read()

    orchestrator = build_orchestrator(settings, heuristic_only=args.heuristic_only)
    try:
        result = orchestrator.extract(raw_text)
    except EmptyInputError as e:
        print(json.dumps({"success": False, "error": str(e)}))
        return 1

    print(json.dumps(result.to_response(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
