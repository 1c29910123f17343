#!/usr/bin/env python3
"""CLI for verifying a CSV of selfie/document pairs."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from tqdm import tqdm

from faceverify.config import load_config
from faceverify.errors import VerificationError
from faceverify.io_utils import ensure_dir, resolve_path, setup_logging
from faceverify.verifier import FaceVerifier


LOGGER = logging.getLogger("scripts.batch_compare")

REQUIRED_COLUMNS = ("selfie", "document")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compare selfie/document pairs listed in a CSV")
    parser.add_argument("pairs_csv", type=Path, help="CSV with 'selfie' and 'document' columns")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Output CSV path (defaults to <pairs>-results.csv)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/verification.yaml"),
        help="Verification config YAML (defaults are used when missing)",
    )
    return parser.parse_args(argv)


def load_pairs(path: Path) -> pd.DataFrame:
    pairs = pd.read_csv(path)
    missing = [column for column in REQUIRED_COLUMNS if column not in pairs.columns]
    if missing:
        raise ValueError(f"{path} is missing required columns: {missing}")
    return pairs


def compare_pairs(verifier: FaceVerifier, pairs: pd.DataFrame, base_dir: Optional[Path] = None) -> pd.DataFrame:
    """One output row per input pair; failures are recorded, not raised."""
    rows: List[Dict[str, Any]] = []
    for record in tqdm(pairs.to_dict("records"), desc="Comparing pairs", unit="pair"):
        selfie = resolve_path(str(record["selfie"]), base_dir)
        document = resolve_path(str(record["document"]), base_dir)
        row: Dict[str, Any] = {
            "selfie": record["selfie"],
            "document": record["document"],
            "similarity": None,
            "confidence": None,
            "passed": False,
            "error": None,
        }
        try:
            result = verifier.compare_faces(selfie, document)
        except (VerificationError, FileNotFoundError, ValueError) as exc:
            LOGGER.warning("Pair %s / %s failed: %s", record["selfie"], record["document"], exc)
            row["error"] = f"{type(exc).__name__}: {exc}"
        else:
            row.update(
                similarity=result.similarity,
                confidence=result.confidence.value,
                passed=result.passed,
            )
        rows.append(row)
    return pd.DataFrame(rows, columns=["selfie", "document", "similarity", "confidence", "passed", "error"])


def main(argv: Optional[List[str]] = None, verifier: Optional[FaceVerifier] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    pairs = load_pairs(args.pairs_csv)
    if verifier is None:
        verifier = FaceVerifier.from_config(load_config(args.config))

    results = compare_pairs(verifier, pairs, base_dir=args.pairs_csv.parent)
    output_path = args.output or args.pairs_csv.with_name(f"{args.pairs_csv.stem}-results.csv")
    ensure_dir(output_path.parent)
    results.to_csv(output_path, index=False)
    LOGGER.info(
        "Compared %d pairs (%d passed, %d errors); wrote %s",
        len(results),
        int(results["passed"].sum()),
        int(results["error"].notna().sum()),
        output_path,
    )


if __name__ == "__main__":
    main()
