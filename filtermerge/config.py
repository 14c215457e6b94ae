"""
config.py - Project Defaults

Static defaults for list headers and on-disk layout. Runtime knobs (timeouts,
retries, concurrency, output formats) are command-line flags, see pipeline.py.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final, NamedTuple


@dataclass(frozen=True)
class FilterMeta:
    """Header fields written at the top of every exported list."""
    title: str
    description: str
    madeby: str
    homepage: str = ""
    license: str = "BSD-3-Clause"
    version: str = "1.0.0"
    expires: str = "1 day"


DEFAULT_FILTER_META: Final[FilterMeta] = FilterMeta(
    title="filtermerge Combined List",
    description="Combined and deduplicated filter list for AdGuard and DNS blockers",
    madeby="filtermerge maintainers",
)

#: Attribution that earns the maintainer bonus when ranking duplicates.
DEFAULT_MAINTAINER: Final[str] = DEFAULT_FILTER_META.madeby


class Paths(NamedTuple):
    """Working directories for one pipeline run."""
    input_dir: Path
    output_dir: Path
    cache_dir: Path
    logs_dir: Path
    stats_file: Path


def create_paths(base_dir: str | Path) -> Paths:
    """
    Build the standard directory layout under base_dir.

    Example:
        >>> create_paths("/tmp/run").output_dir
        PosixPath('/tmp/run/filters/output')
    """
    base = Path(base_dir)
    filters_dir = base / "filters"
    logs_dir = base / "logs"
    return Paths(
        input_dir=filters_dir / "input",
        output_dir=filters_dir / "output",
        cache_dir=base / ".cache",
        logs_dir=logs_dir,
        stats_file=logs_dir / "stats.json",
    )
