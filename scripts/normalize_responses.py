#!/usr/bin/env python
"""Run stored raw responses through the normalizer.

Reads a JSONL file where each line is a record holding a raw completion
(the API call logs under results/logs/ work as-is) and writes the same
records with `normalized` and `fallback_used` added. Records of failed calls
(`"success": false`) are counted and left out. Lines that are not JSON
objects are treated as raw responses themselves.

Usage:
    python scripts/normalize_responses.py INPUT.jsonl OUTPUT.jsonl [--field response]
"""
import argparse
import json
import sys
from pathlib import Path

from tqdm import tqdm

# Add project root to path for imports
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from reply_normalizer.normalization import FALLBACK_MESSAGE, normalize_response


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Normalize raw model responses stored in a JSONL file"
    )
    parser.add_argument("input", type=str, help="Input JSONL file")
    parser.add_argument("output", type=str, help="Output JSONL file")
    parser.add_argument(
        "--field",
        type=str,
        default="response",
        help="Record field holding the raw response (default: response)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output",
    )
    return parser.parse_args(argv)


def _to_record(line: str, field: str) -> dict:
    try:
        record = json.loads(line)
    except ValueError:
        record = None
    if not isinstance(record, dict):
        record = {field: line}
    return record


def normalize_file(input_path: Path, output_path: Path, field: str = "response", verbose: bool = True) -> dict:
    """Normalize every record of input_path into output_path.

    Returns:
        Counts of processed records, fallback answers and skipped failed calls
    """
    with open(input_path, "r", encoding="utf-8") as f:
        lines = [line.rstrip("\n") for line in f if line.strip()]

    output_path.parent.mkdir(parents=True, exist_ok=True)

    stats = {"records": 0, "fallback_answers": 0, "failed_calls": 0}
    with open(output_path, "w", encoding="utf-8") as out:
        for line in tqdm(lines, desc="Normalizing", disable=not verbose):
            record = _to_record(line, field)
            if record.get("success") is False:
                stats["failed_calls"] += 1
                continue

            raw = record.get(field)
            normalized = normalize_response(raw if isinstance(raw, str) else "")
            record["normalized"] = normalized
            record["fallback_used"] = normalized == FALLBACK_MESSAGE
            out.write(json.dumps(record, ensure_ascii=False) + "\n")

            stats["records"] += 1
            stats["fallback_answers"] += int(record["fallback_used"])

    return stats


def main(argv=None):
    args = parse_args(argv)

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Input file not found: {input_path}", file=sys.stderr)
        return 1

    stats = normalize_file(input_path, Path(args.output), field=args.field, verbose=not args.quiet)

    if not args.quiet:
        print(f"Records normalized: {stats['records']}")
        print(f"Fallback answers: {stats['fallback_answers']}")
        print(f"Failed calls skipped: {stats['failed_calls']}")
        print(f"Output: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
