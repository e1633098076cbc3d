from __future__ import annotations

import hashlib
import re
from collections import defaultdict
from dataclasses import dataclass
from difflib import SequenceMatcher
from itertools import combinations
from typing import Iterable, Mapping

from agentdocs.invariants import never
from agentdocs.markdown import Document, sections
from agentdocs.order_contract import ordered_or_sorted
from agentdocs.timeout_context import check_deadline

DEFAULT_THRESHOLD = 0.85
DEFAULT_MIN_SECTION_LINES = 3

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ExactGroup:
    fingerprint: str
    paths: tuple[str, ...]


@dataclass(frozen=True)
class NearPair:
    left: str
    right: str
    ratio: float


@dataclass(frozen=True)
class SectionOccurrence:
    path: str
    line: int
    title: str


@dataclass(frozen=True)
class DuplicateSection:
    fingerprint: str
    slug: str
    line_count: int
    occurrences: tuple[SectionOccurrence, ...]


@dataclass(frozen=True)
class DuplicateReport:
    threshold: float
    min_section_lines: int
    documents: tuple[str, ...]
    exact: tuple[ExactGroup, ...]
    near: tuple[NearPair, ...]
    sections: tuple[DuplicateSection, ...]

    @property
    def has_duplicates(self) -> bool:
        return bool(self.exact or self.near or self.sections)

    @property
    def summary(self) -> dict[str, int]:
        return {
            "documents": len(self.documents),
            "exact_groups": len(self.exact),
            "near_pairs": len(self.near),
            "duplicate_sections": len(self.sections),
        }


def _normalized_lines(lines: Iterable[str]) -> list[str]:
    collapsed: list[str] = []
    for line in lines:
        check_deadline()
        stripped = line.rstrip()
        if not stripped and (not collapsed or not collapsed[-1]):
            continue
        collapsed.append(stripped)
    while collapsed and not collapsed[-1]:
        collapsed.pop()
    return collapsed


def _content_lines(lines: Iterable[str]) -> list[str]:
    return [_WS_RE.sub(" ", line.strip()) for line in lines if line.strip()]


def _digest(lines: Iterable[str]) -> str:
    return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


def file_fingerprint(document: Document) -> str:
    """Hash of the body with frontmatter dropped and whitespace-only noise removed."""
    return _digest(_normalized_lines(document.body_lines))


def _validate_threshold(threshold: float) -> float:
    value = float(threshold)
    if not 0.0 < value <= 1.0:
        never("invalid similarity threshold", threshold=threshold)
    return value


def exact_groups(documents: Mapping[str, Document]) -> list[ExactGroup]:
    by_fingerprint: dict[str, list[str]] = defaultdict(list)
    for path in ordered_or_sorted(documents, source="agentdocs.duplicates.exact_groups"):
        check_deadline()
        document = documents[path]
        if not any(line.strip() for line in document.body_lines):
            continue
        by_fingerprint[file_fingerprint(document)].append(path)
    groups = [
        ExactGroup(fingerprint=fingerprint, paths=tuple(paths))
        for fingerprint, paths in by_fingerprint.items()
        if len(paths) > 1
    ]
    return ordered_or_sorted(
        groups,
        source="agentdocs.duplicates.exact_groups.groups",
        key=lambda group: group.paths,
    )


def near_pairs(
    documents: Mapping[str, Document],
    *,
    threshold: float = DEFAULT_THRESHOLD,
    exact: Iterable[ExactGroup] = (),
) -> list[NearPair]:
    limit = _validate_threshold(threshold)
    group_of: dict[str, str] = {}
    for group in exact:
        for path in group.paths:
            group_of[path] = group.fingerprint
    content = {
        path: _content_lines(document.body_lines)
        for path, document in documents.items()
    }
    pairs: list[NearPair] = []
    ordered = ordered_or_sorted(content, source="agentdocs.duplicates.near_pairs")
    for left, right in combinations(ordered, 2):
        check_deadline()
        if left in group_of and group_of.get(left) == group_of.get(right):
            continue
        if not content[left] or not content[right]:
            continue
        matcher = SequenceMatcher(None, content[left], content[right], autojunk=False)
        if matcher.real_quick_ratio() < limit or matcher.quick_ratio() < limit:
            continue
        ratio = matcher.ratio()
        if ratio >= limit:
            pairs.append(NearPair(left=left, right=right, ratio=round(ratio, 4)))
    return ordered_or_sorted(
        pairs,
        source="agentdocs.duplicates.near_pairs.pairs",
        key=lambda pair: (-pair.ratio, pair.left, pair.right),
    )


def duplicate_sections(
    documents: Mapping[str, Document],
    *,
    min_section_lines: int = DEFAULT_MIN_SECTION_LINES,
) -> list[DuplicateSection]:
    if min_section_lines < 1:
        never("invalid minimum section size", min_section_lines=min_section_lines)
    buckets: dict[str, list[SectionOccurrence]] = defaultdict(list)
    sizes: dict[str, int] = {}
    slugs: dict[str, str] = {}
    for path in ordered_or_sorted(documents, source="agentdocs.duplicates.duplicate_sections"):
        check_deadline()
        for section in sections(documents[path]):
            check_deadline()
            body = _content_lines(section.own_lines)
            if len(body) < min_section_lines:
                continue
            fingerprint = _digest(body)
            buckets[fingerprint].append(
                SectionOccurrence(
                    path=path,
                    line=section.heading.line,
                    title=section.heading.title,
                )
            )
            sizes[fingerprint] = len(body)
            slugs.setdefault(fingerprint, section.heading.slug)
    found: list[DuplicateSection] = []
    for fingerprint, occurrences in buckets.items():
        check_deadline()
        if len({occurrence.path for occurrence in occurrences}) < 2:
            continue
        found.append(
            DuplicateSection(
                fingerprint=fingerprint,
                slug=slugs[fingerprint],
                line_count=sizes[fingerprint],
                occurrences=tuple(occurrences),
            )
        )
    return ordered_or_sorted(
        found,
        source="agentdocs.duplicates.duplicate_sections.found",
        key=lambda entry: (entry.slug, entry.occurrences[0].path, entry.occurrences[0].line),
    )


def find_duplicate_files(
    documents: Mapping[str, Document],
    *,
    threshold: float = DEFAULT_THRESHOLD,
    min_section_lines: int = DEFAULT_MIN_SECTION_LINES,
) -> DuplicateReport:
    exact = exact_groups(documents)
    return DuplicateReport(
        threshold=_validate_threshold(threshold),
        min_section_lines=min_section_lines,
        documents=tuple(sorted(documents)),
        exact=tuple(exact),
        near=tuple(near_pairs(documents, threshold=threshold, exact=exact)),
        sections=tuple(duplicate_sections(documents, min_section_lines=min_section_lines)),
    )
