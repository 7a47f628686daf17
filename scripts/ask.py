#!/usr/bin/env python
"""Ask a model one question and print the normalized answer.

Usage:
    python scripts/ask.py "What is our leave policy?" [--model KEY] [--raw]
"""
import argparse
import sys
from pathlib import Path

import openai
import requests

# Add project root to path for imports
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from reply_normalizer.api_logger import APILogger
from reply_normalizer.config import DEFAULT_MODEL, MODELS
from reply_normalizer.fetcher import APIError, get_answer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Send a prompt to a completion service and print the cleaned answer"
    )
    parser.add_argument("prompt", help="Prompt to send")
    parser.add_argument(
        "--model",
        default=DEFAULT_MODEL,
        choices=sorted(MODELS),
        help=f"Model key (default: {DEFAULT_MODEL})",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the raw completion without normalization",
    )
    parser.add_argument(
        "--no-log-file",
        action="store_true",
        help="Don't write the call to results/logs/",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Directory for call logs (default: results/logs/)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    api_logger = APILogger(
        log_dir=Path(args.log_dir) if args.log_dir else None,
        enable_file_logging=not args.no_log_file,
        enable_console_logging=False,
    )

    try:
        answer = get_answer(
            args.prompt,
            model_key=args.model,
            normalize=not args.raw,
            api_logger=api_logger,
        )
    except (APIError, requests.RequestException, openai.APIConnectionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(answer)
    return 0


if __name__ == "__main__":
    sys.exit(main())
