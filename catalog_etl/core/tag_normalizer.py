# catalog_etl/core/tag_normalizer.py
"""
Tag Normalizer: language-scoped tag lists

normalize_tags(raw, lang):
- lowercase + trim every entry
- keep only entries prefixed "<lang>:" and strip that prefix (then trim again)
- drop empties, deduplicate keeping first occurrence

Example
  normalize_tags(["en:Dairy", "fr:Lait", "EN: Cheese "], "en") -> ["dairy", "cheese"]
"""

from __future__ import annotations

from typing import Iterable, List, Optional


def normalize_tags(raw: Optional[Iterable[str]], lang: str) -> List[str]:
    if not raw:
        return []

    prefix = f"{lang.strip().lower()}:"
    out: List[str] = []
    seen: set[str] = set()

    for entry in raw:
        if entry is None:
            continue
        s = str(entry).strip().lower()
        if not s.startswith(prefix):
            continue
        name = s[len(prefix):].strip()
        if not name or name in seen:
            continue
        seen.add(name)
        out.append(name)

    return out


__all__ = ["normalize_tags"]
