from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class FindingDTO(BaseModel):
    path: str
    line: int
    code: str
    severity: str
    message: str


class LintSummaryDTO(BaseModel):
    documents: int
    errors: int
    warnings: int
    by_code: Dict[str, int] = {}


class LintReportDTO(BaseModel):
    summary: LintSummaryDTO
    findings: List[FindingDTO]


class RuleDTO(BaseModel):
    code: str
    name: str
    severity: str
    summary: str


class ExactGroupDTO(BaseModel):
    fingerprint: str
    paths: List[str]


class NearPairDTO(BaseModel):
    left: str
    right: str
    ratio: float


class SectionOccurrenceDTO(BaseModel):
    path: str
    line: int
    title: str


class DuplicateSectionDTO(BaseModel):
    fingerprint: str
    slug: str
    line_count: int
    occurrences: List[SectionOccurrenceDTO]


class DuplicateReportDTO(BaseModel):
    threshold: float
    min_section_lines: int
    documents: List[str]
    summary: Dict[str, int]
    exact: List[ExactGroupDTO] = []
    near: List[NearPairDTO] = []
    sections: List[DuplicateSectionDTO] = []


class CanonicalDirectiveDTO(BaseModel):
    line: int
    text: str
    normalized: str


class CanonicalDTO(BaseModel):
    source: str
    directives: List[CanonicalDirectiveDTO] = []


class InstructionGraphDTO(BaseModel):
    root: str
    included_docs: List[str]
    summary: Dict[str, int]
    canonical: CanonicalDTO
    directive_references: List[Dict[str, Any]] = []
    duplicate_mandatory: List[Dict[str, Any]] = []
    precedence_conflicts: List[Dict[str, Any]] = []
    scoped_delta_violations: List[Dict[str, Any]] = []
    stale_dependency_revisions: List[Dict[str, Any]] = []
    hidden_operational_toggles: List[Dict[str, Any]] = []
    broken_references: List[Dict[str, Any]] = []


class BundleBlockDTO(BaseModel):
    source: str
    start: int
    line_count: int


class BundleSectionDTO(BaseModel):
    slug: str
    title: str
    anchor: Optional[str] = None
    sources: List[str]
    line_count: int


class DroppedItemDTO(BaseModel):
    source: str
    line: int
    text: str
    first_source: str
    first_line: int


class BundleDTO(BaseModel):
    title: str
    dedupe: bool
    sources: List[str]
    summary: Dict[str, int]
    preambles: List[BundleBlockDTO] = []
    sections: List[BundleSectionDTO] = []
    dropped: List[DroppedItemDTO] = []


class OutlineHeadingDTO(BaseModel):
    level: int
    title: str
    line: int
    slug: str
    anchor: Optional[str] = None


class OutlineDTO(BaseModel):
    documents: Dict[str, List[OutlineHeadingDTO]]


class CheckReportDTO(BaseModel):
    lint: LintSummaryDTO
    duplicates: Dict[str, int]
    directives: Dict[str, int]
    warnings: List[str] = []
    violations: List[str] = []
    exit_code: int = 0
