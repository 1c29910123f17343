#!/usr/bin/env python3
"""CLI for comparing a selfie against an identity-document photo."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from faceverify.config import VerifierConfig, load_config
from faceverify.errors import VerificationError
from faceverify.io_utils import dump_json, ensure_dir, setup_logging, to_json
from faceverify.verifier import FaceVerifier


LOGGER = logging.getLogger("scripts.compare_faces")

EXIT_PASSED = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify that a selfie and a document photo show the same person")
    parser.add_argument("selfie", type=Path, help="Path to the selfie image")
    parser.add_argument("document", type=Path, help="Path to the identity-document image")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/verification.yaml"),
        help="Verification config YAML (defaults are used when missing)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional path for the result JSON (always printed to stdout)",
    )
    parser.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Worker threads for per-image stages (overrides config)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> VerifierConfig:
    config = load_config(args.config)
    if args.threads is not None:
        config.threads = max(1, int(args.threads))
    return config


def main(argv: Optional[List[str]] = None, verifier: Optional[FaceVerifier] = None) -> int:
    args = parse_args(argv)
    setup_logging(getattr(logging, args.log_level))

    config = build_config(args)
    if verifier is None:
        verifier = FaceVerifier.from_config(config)

    try:
        result = verifier.compare_faces(args.selfie, args.document)
    except (VerificationError, FileNotFoundError, ValueError) as exc:
        LOGGER.error("Comparison failed: %s", exc)
        print(to_json({"error": str(exc), "error_type": type(exc).__name__}))
        return EXIT_ERROR

    print(to_json(result))
    if args.output is not None:
        ensure_dir(args.output.parent)
        dump_json(args.output, result)
        LOGGER.info("Wrote result JSON to %s", args.output)
    return EXIT_PASSED if result.passed else EXIT_REJECTED


if __name__ == "__main__":
    sys.exit(main())
