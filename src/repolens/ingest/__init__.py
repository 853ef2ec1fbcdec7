"""repolens ingest pipeline — GitHub access, loading, summarizing, chunking, orchestration."""

from repolens.ingest.admission import AdmissionResult, CreditAdmissionControl
from repolens.ingest.chunker import CodeChunk, CodeChunker
from repolens.ingest.commits import CommitProcessor, CommitResult
from repolens.ingest.github_host import CommitInfo, GitHost, RepoRef, parse_repo_url
from repolens.ingest.loader import Document, RepositoryLoader
from repolens.ingest.orchestrator import IngestionOrchestrator
from repolens.ingest.summarizer import Summarizer

__all__ = [
    "AdmissionResult",
    "CodeChunk",
    "CodeChunker",
    "CommitInfo",
    "CommitProcessor",
    "CommitResult",
    "CreditAdmissionControl",
    "Document",
    "GitHost",
    "IngestionOrchestrator",
    "RepoRef",
    "RepositoryLoader",
    "Summarizer",
    "parse_repo_url",
]
