"""Credit admission control — size a repository and gate ingestion on the balance."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from repolens.db.repository import Repository
from repolens.errors import InsufficientCredits
from repolens.ingest.github_host import GitHost, parse_repo_url


@dataclass
class AdmissionResult:
    file_count: int
    credits: int

    @property
    def required_credits(self) -> int:
        # One credit per file.
        return self.file_count

    @property
    def allowed(self) -> bool:
        return self.required_credits <= self.credits


class CreditAdmissionControl:
    """Compare a repository's file count with a user's credit balance."""

    def __init__(self, repo: Repository, host: GitHost) -> None:
        self._repo = repo
        self._host = host

    async def check(self, user_id: str, repo_url: str) -> AdmissionResult:
        """Count the repository's files and read the balance. Never charges.

        Raises:
            InvalidRepositoryReference: If *repo_url* cannot be parsed.
            HostUnavailable: If the file count cannot be obtained.
        """
        ref = parse_repo_url(repo_url)
        file_count = await self._host.count_files(ref)
        result = AdmissionResult(file_count=file_count, credits=self._repo.get_credits(user_id))
        logger.info(
            f"{ref.full_name}: {file_count} files, user {user_id} has {result.credits} credits"
        )
        return result

    async def admit(self, user_id: str, repo_url: str) -> AdmissionResult:
        """check() and raise InsufficientCredits when the balance does not cover it."""
        result = await self.check(user_id, repo_url)
        if not result.allowed:
            raise InsufficientCredits(result.file_count, result.credits)
        return result

    def charge(self, user_id: str, amount: int) -> None:
        """Atomically take *amount* credits from *user_id*.

        Raises:
            InsufficientCredits: If the balance dropped below *amount* meanwhile.
        """
        if not self._repo.charge_credits(user_id, amount):
            raise InsufficientCredits(amount, self._repo.get_credits(user_id))
        logger.info(f"Charged {amount} credits to user {user_id}")
