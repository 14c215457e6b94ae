#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for filter list merging.

Usage:
    python -m filtermerge.pipeline --input-dir filters/input --outdir filters/output
    python -m filtermerge.pipeline --sources sources.txt --outdir out --formats hosts adguard
    python -m filtermerge.pipeline --base-dir . --default-sources

With --base-dir, the input, output, cache and stats locations default to the
standard layout under that directory (see config.create_paths).

Pipeline stages:
1. Load local *.txt files and fetch the lists named in the sources file
   (or the enabled built-in lists)
2. Classify every line into one RuleStore (per-kind uniqueness)
3. Deduplicate across kinds and sources, merging metadata
4. Export one file per requested format
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Final, Iterable, Mapping, NamedTuple, Sequence

from filtermerge.config import create_paths
from filtermerge.deduplicator import DedupStats, RuleDeduplicator
from filtermerge.downloader import (
    DEFAULT_CONCURRENCY,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT,
    fetch_sources,
    load_sources,
)
from filtermerge.exporter import SUPPORTED_FORMATS, ExportOptions, export_with_options
from filtermerge.metadata import StoredRule
from filtermerge.parser import extract_list_header
from filtermerge.sources import SOURCE_NAMES, default_sources
from filtermerge.store import RuleStore

logger = logging.getLogger(__name__)

#: Header fields are only looked for this far into a list
HEADER_SCAN_LINES: Final[int] = 50


class PipelineResult(NamedTuple):
    """Output of process_contents()."""
    rules: list[StoredRule]
    store_stats: dict[str, int]
    dedup_stats: DedupStats


def _list_title(text: str | None) -> str | None:
    """Title from the comment header at the top of a list, if it has one."""
    if not text:
        return None
    header = extract_list_header(text.split("\n", HEADER_SCAN_LINES)[:HEADER_SCAN_LINES])
    return header.title if header else None


def load_local_files(input_dir: str | Path) -> dict[str, str]:
    """
    Read every *.txt file in a directory.

    A file is named after its FILTER_LISTS entry, else its "! Title:" header,
    else its stem. A title already taken by an earlier file falls back to the stem.

    Returns:
        source name -> file content, in file name order
    """
    input_path = Path(input_dir)
    if not input_path.is_dir():
        raise FileNotFoundError(f"Input directory not found: {input_dir}")

    contents: dict[str, str] = {}
    for file in sorted(input_path.glob("*.txt")):
        with open(file, encoding="utf-8-sig", errors="replace") as f:
            text = f.read()
        name = SOURCE_NAMES.get(file.as_posix()) or _list_title(text) or file.stem
        if name in contents:
            name = file.stem
        contents[name] = text
    return contents


def fetch_remote(
    identifiers: Iterable[str],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    cache_dir: Path | None = None,
) -> dict[str, str | None]:
    """
    Fetch lists by URL or path.

    Keys are the FILTER_LISTS name, else the list's "! Title:" header, else
    the identifier itself.
    """
    identifiers = list(identifiers)
    if not identifiers:
        return {}
    fetched = asyncio.run(fetch_sources(
        identifiers,
        concurrency=concurrency,
        timeout=timeout,
        retries=retries,
        cache_dir=cache_dir,
    ))
    contents: dict[str, str | None] = {}
    for identifier, text in fetched.items():
        name = SOURCE_NAMES.get(identifier) or _list_title(text) or identifier
        if name in contents:
            name = identifier
        contents[name] = text
    return contents


def process_contents(
    contents: Mapping[str, str | None],
    *,
    store: RuleStore | None = None,
    deduplicator: RuleDeduplicator | None = None,
) -> PipelineResult:
    """
    Run store ingestion and deduplication over already loaded lists.

    Args:
        contents: source name -> list text (None for sources that failed)
        store: Store to ingest into (a fresh one by default)
        deduplicator: Deduplicator to use (default weights by default)

    Returns:
        PipelineResult with the final rules and both stat sets
    """
    store = store if store is not None else RuleStore()
    deduplicator = deduplicator if deduplicator is not None else RuleDeduplicator()

    for name, text in contents.items():
        if text is None:
            logger.warning("No content for %s, skipping", name)
            continue
        store.add_text(text, name)

    rules = deduplicator.process_rules(store.get_unique_rules())
    return PipelineResult(rules, store.get_stats(), deduplicator.get_stats())


def print_summary(stats: dict) -> None:
    """Print formatted summary."""
    store_stats = stats["store"]
    dedup = stats["dedup"]

    print("\n" + "=" * 60)
    print("📊 PIPELINE SUMMARY")
    print("=" * 60)

    print(f"\n📁 Sources:  {stats['sources_loaded']} loaded, {stats['sources_failed']} failed")
    print(f"\n📈 Lines:")
    print(f"   Processed:     {store_stats['total_processed']:>12,}")
    print(f"   Stored:        {dedup['total']:>12,}")
    print(f"   Final output:  {dedup['unique_rules']:>12,} ({dedup['duplicate_percent']} duplicates)")

    print(f"\n🗄️  Store:")
    print(f"   Duplicates:        {store_stats['duplicates']:>10,}")
    print(f"   Merged sources:    {store_stats['merged']:>10,}")
    print(f"   Conflicts:         {store_stats['conflicts']:>10,}")
    print(f"   Skipped:           {store_stats['skipped']:>10,}")
    print(f"   Invalid:           {store_stats['invalid']:>10,}")
    print(f"   Unrecognized:      {store_stats['unrecognized']:>10,}")
    print(f"   Preprocessor:      {store_stats['preprocessor']:>10,}")
    print(f"   Hints:             {store_stats['hint']:>10,}")

    print(f"\n🔧 Deduplication:")
    print(f"   Duplicates:        {dedup['duplicates']:>10,}")
    print(f"   Duplicate groups:  {dedup['duplicate_groups']:>10,}")
    print(f"   Conflicts:         {dedup['conflicts']:>10,}")
    print(f"   Degraded keys:     {dedup['degraded']:>10,}")

    print(f"\n📦 Output:")
    for fmt, count in stats["exported"].items():
        print(f"   {fmt + ':':<18}{count:>10,}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Classify, deduplicate and export filter lists"
    )
    parser.add_argument(
        "--input-dir",
        type=Path,
        help="Directory of local *.txt filter lists",
    )
    parser.add_argument(
        "--sources",
        type=Path,
        help="File with one URL or path per line",
    )
    parser.add_argument(
        "--default-sources",
        action="store_true",
        help="Also fetch the enabled built-in filter lists",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        help="Project directory; supplies default input, output, cache and stats paths",
    )
    parser.add_argument(
        "--outdir",
        type=Path,
        help="Output directory for exported lists",
    )
    parser.add_argument(
        "--formats",
        nargs="+",
        choices=SUPPORTED_FORMATS,
        default=["all"],
        help="Output formats (default: all)",
    )
    parser.add_argument(
        "--cache",
        type=Path,
        help="Cache directory for downloaded lists",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f"Max concurrent downloads (default: {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        default=DEFAULT_TIMEOUT,
        help=f"Request timeout in seconds (default: {DEFAULT_TIMEOUT})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retry attempts (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--stats-json",
        type=Path,
        help="Write run statistics to this JSON file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.base_dir is not None:
        paths = create_paths(args.base_dir)
        if args.input_dir is None and paths.input_dir.is_dir():
            args.input_dir = paths.input_dir
        args.outdir = args.outdir or paths.output_dir
        args.cache = args.cache or paths.cache_dir
        args.stats_json = args.stats_json or paths.stats_file

    if args.outdir is None:
        parser.print_usage(sys.stderr)
        print("error: one of --outdir or --base-dir is required", file=sys.stderr)
        return 2

    if args.input_dir is None and args.sources is None and not args.default_sources:
        parser.print_usage(sys.stderr)
        print(
            "error: at least one of --input-dir, --sources or --default-sources is required",
            file=sys.stderr,
        )
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        print("🚀 Starting filter list pipeline...")
        print("-" * 60)
        start_time = time.time()

        # =====================================================================
        # Stage 1: Load and fetch
        # =====================================================================
        print("📖 Stage 1: Loading sources...")
        contents: dict[str, str | None] = {}
        if args.input_dir is not None:
            contents.update(load_local_files(args.input_dir))
        identifiers = load_sources(args.sources) if args.sources is not None else []
        if args.default_sources:
            identifiers.extend(default_sources())
        if identifiers:
            contents.update(fetch_remote(
                identifiers,
                concurrency=args.concurrency,
                timeout=args.timeout,
                retries=args.retries,
                cache_dir=args.cache,
            ))
        failed = sum(1 for text in contents.values() if text is None)
        print(f"   Loaded {len(contents) - failed} sources ({failed} failed)")

        # =====================================================================
        # Stage 2: Store and deduplicate
        # =====================================================================
        print("\n⚙️  Stage 2: Classifying and deduplicating...")
        stage_start = time.time()
        result = process_contents(contents)
        print(f"   Kept {len(result.rules):,} rules ({time.time() - stage_start:.1f}s)")

        # =====================================================================
        # Stage 3: Export
        # =====================================================================
        print("\n📝 Stage 3: Exporting...")
        exported = export_with_options(
            result.rules, args.outdir, options=ExportOptions(formats=tuple(args.formats))
        )

        stats = {
            "sources_loaded": len(contents) - failed,
            "sources_failed": failed,
            "store": result.store_stats,
            "dedup": result.dedup_stats.to_dict(),
            "exported": exported,
        }
        if args.stats_json is not None:
            args.stats_json.parent.mkdir(parents=True, exist_ok=True)
            with open(args.stats_json, "w", encoding="utf-8") as f:
                json.dump(stats, f, indent=2)

        print_summary(stats)
        print(f"\n⏱️  Total time: {time.time() - start_time:.1f}s")
        print("✅ Pipeline completed successfully!")
        return 0

    except Exception as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
