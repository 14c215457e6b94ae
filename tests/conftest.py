import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


def _ensure_repo_on_path() -> None:
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))


_ensure_repo_on_path()

from filtermerge.classifier import RuleKind, classify  # noqa: E402
from filtermerge.metadata import StoredRule, create_rule_metadata  # noqa: E402


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def make_rule():
    def _make(text: str, source: str = "test", kind: RuleKind | None = None, **meta) -> StoredRule:
        kind = kind or RuleKind(classify(text))
        metadata = create_rule_metadata(source, kind, text, now=meta.pop("now", None))
        for name, value in meta.items():
            setattr(metadata, name, value)
        return StoredRule.from_text(text, kind, metadata)

    return _make
