"""
fmrmatch command line

Commands:
- decode TEMPLATE [--json]
- verify PROBE CANDIDATE [--threshold N] [--any-position]
- identify PROBE GALLERY_JSON [--threshold N] [--workers N] [--any-position] [--json]

Exit codes: 0 match (or decoded), 1 no match, 2 failure.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Union

from fmrmatch import __version__
from fmrmatch.config import DEFAULT_THRESHOLD, FORMAT_IDENTIFIER, DEFAULT_WORKERS
from fmrmatch.decoder import load_template
from fmrmatch.errors import FormatError
from fmrmatch.models import DecodedTemplate, MatchResult
from fmrmatch.search import search, verify
from fmrmatch.serialization import template_from_json, template_to_json


EXIT_MATCH = 0
EXIT_NO_MATCH = 1
EXIT_FAILURE = 2


def read_template_file(path: Path) -> Union[bytes, str, DecodedTemplate]:
    """Read a template file holding the raw record, base64 text or `decode --json` output.

    Raises:
        InvalidEncoding: If a JSON template document is malformed
    """
    data = path.read_bytes()
    if data.startswith(FORMAT_IDENTIFIER):
        return data
    text = data.decode("ascii", errors="ignore")
    if text.lstrip().startswith("{"):
        return template_from_json(text)
    return text


def _print_summary(template: DecodedTemplate) -> None:
    header = template.header
    print(f"[decode] Version: {header.version}")
    print(f"[decode] Record length: {header.record_length} bytes")
    print(f"[decode] Image: {header.width}x{header.height} "
          f"(resolution {header.x_resolution}x{header.y_resolution})")
    print(f"[decode] Views: {header.view_count}")
    for i, view in enumerate(template.views):
        print(f"  {i}. position={view.finger_position} quality={view.finger_quality} "
              f"minutiae={len(view.minutiae)} usable={len(view.usable_minutiae)}")


def _print_result(operation: str, result: MatchResult) -> None:
    if not result.success:
        print(f"[{operation}] FAILURE ({result.error_type}): {result.error}")
        return

    print(f"[{operation}] Result: {'MATCH' if result.is_match else 'NO MATCH'}")
    if result.best_key is not None:
        print(f"[{operation}] Best key: {result.best_key}")
    print(f"[{operation}] Score: {result.raw_score}/255 ({result.percentage:.1f}%, {result.confidence})")
    print(f"[{operation}] Threshold: {result.threshold}")
    if operation == "identify":
        print(f"[{operation}] Loaded: {result.loaded_templates}, skipped: {result.skipped_templates}")
    print(f"[{operation}] Time: {result.elapsed_ms:.1f}ms")


def _exit_code(result: MatchResult) -> int:
    if not result.success:
        return EXIT_FAILURE
    return EXIT_MATCH if result.is_match else EXIT_NO_MATCH


def cmd_decode(args: argparse.Namespace) -> int:
    try:
        template = load_template(read_template_file(args.template))
    except FormatError as e:
        print(f"[decode] {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if args.json:
        print(template_to_json(template))
    else:
        _print_summary(template)
    return EXIT_MATCH


def cmd_verify(args: argparse.Namespace) -> int:
    result = verify(
        read_template_file(args.probe),
        read_template_file(args.candidate),
        threshold=args.threshold,
        position_aware=not args.any_position,
    )
    _print_result("verify", result)
    return _exit_code(result)


def cmd_identify(args: argparse.Namespace) -> int:
    try:
        gallery = json.loads(args.gallery.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"[identify] Cannot read gallery {args.gallery}: {e}", file=sys.stderr)
        return EXIT_FAILURE

    if not isinstance(gallery, list):
        print("[identify] Gallery must be a JSON array of records", file=sys.stderr)
        return EXIT_FAILURE

    result = search(
        read_template_file(args.probe),
        gallery,
        threshold=args.threshold,
        workers=args.workers,
        position_aware=not args.any_position,
    )

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _print_result("identify", result)
    return _exit_code(result)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fmrmatch",
        description="fmrmatch - ISO/IEC 19794-2 fingerprint template matching"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # Decode command
    decode_parser = subparsers.add_parser("decode", help="Decode and describe a template")
    decode_parser.add_argument("template", type=Path, help="Template file (binary, base64 or JSON)")
    decode_parser.add_argument("--json", action="store_true", help="Print the full template as JSON")
    decode_parser.set_defaults(func=cmd_decode)

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Verify probe against one template (1:1)")
    verify_parser.add_argument("probe", type=Path, help="Probe template file")
    verify_parser.add_argument("candidate", type=Path, help="Enrolled template file")
    verify_parser.add_argument("--threshold", "-t", type=int, default=DEFAULT_THRESHOLD, help="Match threshold (0-255)")
    verify_parser.add_argument("--any-position", action="store_true", help="Compare views of any finger position")
    verify_parser.set_defaults(func=cmd_verify)

    # Identify command
    identify_parser = subparsers.add_parser("identify", help="Identify probe in a gallery (1:N)")
    identify_parser.add_argument("probe", type=Path, help="Probe template file")
    identify_parser.add_argument("gallery", type=Path, help="JSON array of records with 'id' and 'fingerprint'")
    identify_parser.add_argument("--threshold", "-t", type=int, default=DEFAULT_THRESHOLD, help="Match threshold (0-255)")
    identify_parser.add_argument("--workers", "-w", type=int, default=DEFAULT_WORKERS, help="Worker processes")
    identify_parser.add_argument("--any-position", action="store_true", help="Compare views of any finger position")
    identify_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    identify_parser.set_defaults(func=cmd_identify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return EXIT_FAILURE

    try:
        return args.func(args)
    except OSError as e:
        print(f"[{args.command}] {e}", file=sys.stderr)
        return EXIT_FAILURE
    except FormatError as e:
        print(f"[{args.command}] {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_FAILURE
