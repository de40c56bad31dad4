# =============================================================================
# src/cli/extract.py - CLI Extract Command
# =============================================================================
#
# Runs one or more poster images through the five-phase extraction
# pipeline and prints a per-image report:
#
#   Phase 1: Type      classify the poster (concert, festival, film, ...)
#   Phase 2: Artist    headliner, supporting acts, cast, director
#   Phase 3: Venue     venue, city, state; split venue/date text
#   Phase 4: Event     dates, shows, times, prices, plausibility
#   Phase 5: Assembly  merge into a Poster entity and graph plan
#
# Typical usage:
#   python -m src.cli.extract poster.jpg
#   python -m src.cli.extract posters/*.png --concurrency 4
#   python -m src.cli.extract poster.jpg --json -o result.json
#
# Exit code is 0 when every image succeeded, 1 when any failed, and 2 on
# a configuration problem (e.g. no vision model credentials).
# =============================================================================

"""Standalone CLI for the poster extraction pipeline.

Usage::

    python -m src.cli.extract IMAGE [IMAGE ...] [--json] [--concurrency N]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

from src.models.phases import PhaseName
from src.models.processing import (
    IterativeBatchResult,
    IterativeProcessingOptions,
    IterativeProcessingResult,
    LowConfidencePolicy,
)
from src.utils.errors import ConfigurationError

_ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_result(result: IterativeProcessingResult) -> list[str]:
    lines = [f"\n  {Path(result.image_path).name}  [{result.status.value}]"]
    if result.error:
        lines.append(f"  Error: {result.error}")

    entity = result.entity
    if entity is not None:
        lines.append(f"  Type:       {entity.poster_type.value}")
        if entity.title:
            lines.append(f"  Title:      {entity.title}")
        if entity.headliner:
            lines.append(f"  Headliner:  {entity.headliner}")
        if entity.supporting_acts:
            lines.append(f"  Support:    {', '.join(entity.supporting_acts)}")
        if entity.venue_name:
            place = ", ".join(p for p in (entity.venue_name, entity.city, entity.state) if p)
            lines.append(f"  Venue:      {place}")
        if entity.event_dates:
            lines.append(f"  Dates:      {', '.join(entity.event_dates)}")
        elif entity.year:
            lines.append(f"  Year:       {entity.year}")
        if entity.promoter:
            lines.append(f"  Promoter:   {entity.promoter}")

    lines.append(f"  Confidence: {result.overall_confidence:.0%}")
    if result.validation is not None:
        lines.append(
            f"  Validation: {result.validation.status.value} ({result.validation.overall_score}/100)"
        )
    if result.paused_at is not None:
        lines.append(f"  Paused at:  {result.paused_at.value}")
    if result.fields_needing_review:
        lines.append(f"  Review:     {', '.join(result.fields_needing_review)}")

    for phase_result in result.phase_results.values():
        for warning in phase_result.warnings:
            lines.append(f"  ! {warning}")
    return lines


def _format_text_output(batch: IterativeBatchResult) -> str:
    sep = "=" * 60
    summary = batch.summary
    lines = [sep, "  posterExtract Extraction Report", sep]
    for result in batch.results:
        lines.extend(_format_result(result))

    lines.append("")
    lines.append(sep)
    lines.append(
        f"  {summary.total} image(s): {summary.successful} ok, {summary.failed} failed, "
        f"{summary.needs_review} need review"
    )
    lines.append(f"  Average confidence: {summary.average_confidence:.0%}")
    if summary.by_type:
        types = ", ".join(f"{name}={count}" for name, count in sorted(summary.by_type.items()))
        lines.append(f"  By type: {types}")
    lines.append(sep)
    return "\n".join(lines)


def _format_json_output(batch: IterativeBatchResult) -> str:
    return json.dumps(batch.model_dump(mode="json"), indent=2, default=str)


# ---------------------------------------------------------------------------
# Pipeline runner
# ---------------------------------------------------------------------------


def _configure_logs(quiet: bool) -> None:
    """Send logs to stderr; WARNING+ only when *quiet*."""
    from src.config.settings import Settings
    from src.utils.logging import configure_logging

    configure_logging(log_level="WARNING" if quiet else Settings().log_level)


def _print_progress(job_id: str, phase: PhaseName, progress: float, message: str) -> None:
    print(f"[{progress:5.1f}%] {message}", file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    # Deferred: building providers is slow and needs credentials.
    from src.main import build_pipeline

    paths: list[str] = []
    for raw in args.images:
        path = Path(raw)
        if path.suffix.lower() not in _ALLOWED_EXTENSIONS:
            print(
                f"Error: Unsupported file type: {path.suffix or raw}. "
                f"Allowed: {', '.join(sorted(_ALLOWED_EXTENSIONS))}",
                file=sys.stderr,
            )
            return 1
        paths.append(str(path.resolve()))

    try:
        processor = build_pipeline()
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    options = IterativeProcessingOptions(
        on_low_confidence=LowConfidencePolicy(args.on_low_confidence)
        if args.on_low_confidence
        else processor.phase_manager.config.on_low_confidence,
        validate_types=not args.no_validate,
        validate_artists=not args.no_validate,
        validate_venues=not args.no_validate,
        validate_events=not args.no_validate,
        skip_storage=args.skip_storage,
    )

    print(f"Processing {len(paths)} image(s)", file=sys.stderr)
    start = time.monotonic()
    batch = await processor.process_batch(
        paths,
        options=options,
        concurrency=args.concurrency,
        on_progress=None if args.quiet else _print_progress,
    )
    print(f"Done in {time.monotonic() - start:.1f}s", file=sys.stderr)

    text = _format_json_output(batch) if args.json_output else _format_text_output(batch)
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Results written to: {args.output}", file=sys.stderr)
    else:
        print(text)

    return 0 if batch.summary.failed == 0 else 1


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.extract",
        description="Extract structured metadata from event and promotional posters.",
    )
    parser.add_argument("images", nargs="+", help="Poster image files.")
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output results as JSON instead of formatted text.",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Write results to a file instead of stdout.",
    )
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=None,
        help="Images processed at once (default: batch_size from config).",
    )
    parser.add_argument(
        "--on-low-confidence",
        choices=[policy.value for policy in LowConfidencePolicy],
        default=None,
        help="What to do when a phase is not confident enough (default: from config).",
    )
    parser.add_argument(
        "--no-validate",
        action="store_true",
        help="Skip reference-database and knowledge-base validation.",
    )
    parser.add_argument(
        "--skip-storage",
        action="store_true",
        help="Plan graph entities without writing them to the knowledge base.",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress progress and log output below WARNING.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.concurrency is not None and args.concurrency < 1:
        print("Error: --concurrency must be at least 1", file=sys.stderr)
        return 1
    _configure_logs(args.quiet or args.json_output)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
