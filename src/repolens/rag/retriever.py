"""Keyword retriever: heuristic scoring of stored code records for question answering.

No embedding similarity is computed at query time. A question is either an
*overview* question (phrase match) answered from project metadata, recent
commits, README and manifest/entry-point records, or a specific question
answered from records ranked by keyword hits:

  score = 100 · [file name contains "readme"]
        +  10 · keywords in file name
        +   5 · keywords in source text
        +   3 · keywords in summary
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

from repolens.config import RetrievalCfg
from repolens.db.models import CodeRecord, CommitRecord, Project
from repolens.db.repository import Repository
from repolens.errors import ProjectNotFound

OVERVIEW_PHRASES: tuple[str, ...] = (
    "tell me about",
    "what is this project",
    "what is the project",
    "overview",
    "describe this project",
    "describe the project",
    "explain this project",
    "explain the project",
    "what does this project do",
    "what is this codebase",
)

STOP_WORDS: frozenset[str] = frozenset(
    """
    the a an and or but in on at to for of with by is are was were be been
    have has had do does did will would should could can may might this that
    these those i you he she it we they what where when why how about
    """.split()
)

KEY_FILE_NAMES: frozenset[str] = frozenset(
    [
        "package.json",
        "package.yaml",
        "requirements.txt",
        "pyproject.toml",
        "Cargo.toml",
        "go.mod",
        "pom.xml",
        "index.ts",
        "index.js",
        "main.ts",
        "main.js",
        "main.py",
        "app.ts",
        "app.js",
        "app.py",
        "App.tsx",
        "App.jsx",
    ]
)

README_BONUS = 100
FILE_NAME_WEIGHT = 10
SOURCE_WEIGHT = 5
SUMMARY_WEIGHT = 3

_WHITESPACE_RE = re.compile(r"\s+")

OVERVIEW_COMMIT_COUNT = 10
OVERVIEW_README_COUNT = 5
OVERVIEW_README_REFERENCES = 3
OVERVIEW_KEY_FILE_COUNT = 5
STRUCTURE_SCAN_COUNT = 50
STRUCTURE_SAMPLE_COUNT = 20


# ------------------------------------------------------------------
# Pure helpers
# ------------------------------------------------------------------


def is_overview_question(question: str) -> bool:
    lowered = question.lower()
    return any(phrase in lowered for phrase in OVERVIEW_PHRASES)


def extract_keywords(question: str, max_keywords: int = 10) -> list[str]:
    """Lower-case, split on whitespace, drop stop words and words under 3 chars."""
    words = _WHITESPACE_RE.split(question.lower().strip())
    keywords = [w for w in words if len(w) > 2 and w not in STOP_WORDS]
    return keywords[:max_keywords]


def is_readme(file_name: str) -> bool:
    return "readme" in file_name.lower()


@dataclass
class ScoredRecord:
    record: CodeRecord
    score: int


def score_record(record: CodeRecord, keywords: list[str]) -> tuple[int, bool]:
    """Return (score, matched) for one record. README files always count as matched."""
    file_name = record.file_name.lower()
    source = record.source_code.lower()
    summary = record.summary.lower()

    readme = is_readme(file_name)
    score = README_BONUS if readme else 0
    matched = readme
    for weight, text in (
        (FILE_NAME_WEIGHT, file_name),
        (SOURCE_WEIGHT, source),
        (SUMMARY_WEIGHT, summary),
    ):
        for keyword in keywords:
            if keyword in text:
                score += weight
                matched = True
    return score, matched


def score_records(
    records: list[CodeRecord], keywords: list[str], limit: int = 15
) -> list[ScoredRecord]:
    """Keep matching records (plus READMEs), best score first, at most *limit*.

    Ties keep the input order.
    """
    scored: list[ScoredRecord] = []
    for record in records:
        score, matched = score_record(record, keywords)
        if matched:
            scored.append(ScoredRecord(record, score))
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit]


# ------------------------------------------------------------------
# Retriever
# ------------------------------------------------------------------


@dataclass
class RetrievedContext:
    """Everything the prompt assembler needs for one question."""

    project: Project
    overview: bool
    records: list[CodeRecord] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    # Overview mode only.
    readmes: list[CodeRecord] = field(default_factory=list)
    commits: list[CommitRecord] = field(default_factory=list)
    file_names: list[str] = field(default_factory=list)


class KeywordRetriever:
    """Select stored code records relevant to a question."""

    def __init__(self, repo: Repository, cfg: RetrievalCfg | None = None) -> None:
        self._repo = repo
        self.cfg = cfg or RetrievalCfg()

    def retrieve(self, project_id: str, question: str) -> RetrievedContext:
        """Classify *question* and gather its context.

        Raises:
            ProjectNotFound: If the project does not exist or is archived.
        """
        project = self._repo.get_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        if is_overview_question(question):
            return self._overview(project)

        keywords = extract_keywords(question, self.cfg.max_keywords)
        return RetrievedContext(
            project=project,
            overview=False,
            records=self.search_records(project_id, keywords),
            keywords=keywords,
        )

    def search_records(self, project_id: str, keywords: list[str]) -> list[CodeRecord]:
        """Rank a project's records by keyword score.

        With no keywords, an arbitrary capped sample is returned instead.
        """
        if not keywords:
            return self._repo.list_code_records(project_id, limit=self.cfg.top_k)
        records = self._repo.list_code_records(project_id)
        return [s.record for s in score_records(records, keywords, self.cfg.top_k)]

    def _overview(self, project: Project) -> RetrievedContext:
        records = self._repo.list_code_records(project.id)
        readmes = [r for r in records if is_readme(r.file_name)]
        key_files = [
            r
            for r in records
            if PurePosixPath(r.file_name).name in KEY_FILE_NAMES and not is_readme(r.file_name)
        ]
        file_names = list(dict.fromkeys(r.file_name for r in records))[:STRUCTURE_SCAN_COUNT]
        return RetrievedContext(
            project=project,
            overview=True,
            records=(
                readmes[:OVERVIEW_README_REFERENCES] + key_files[:OVERVIEW_KEY_FILE_COUNT]
            )[: self.cfg.overview_top_k],
            readmes=readmes[:OVERVIEW_README_COUNT],
            commits=self._repo.list_commits(project.id, limit=OVERVIEW_COMMIT_COUNT),
            file_names=file_names,
        )
