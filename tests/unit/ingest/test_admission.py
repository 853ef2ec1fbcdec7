"""Tests for CreditAdmissionControl."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from repolens.errors import HostUnavailable, InsufficientCredits, InvalidRepositoryReference
from repolens.ingest.admission import AdmissionResult, CreditAdmissionControl

URL = "https://github.com/acme/demo"


def _host(file_count: int):
    host = MagicMock()
    host.count_files = AsyncMock(return_value=file_count)
    return host


def test_required_credits_equal_file_count():
    result = AdmissionResult(file_count=42, credits=50)
    assert result.required_credits == 42
    assert result.allowed


def test_exact_balance_is_allowed():
    assert AdmissionResult(file_count=10, credits=10).allowed


async def test_check_reports_shortfall_without_charging(repo):
    repo.add_credits("u1", 60)
    result = await CreditAdmissionControl(repo, _host(120)).check("u1", URL)
    assert (result.file_count, result.credits) == (120, 60)
    assert not result.allowed
    assert repo.get_credits("u1") == 60


async def test_admit_raises_insufficient_credits(repo):
    repo.add_credits("u1", 60)
    with pytest.raises(InsufficientCredits) as excinfo:
        await CreditAdmissionControl(repo, _host(120)).admit("u1", URL)
    assert excinfo.value.file_count == 120
    assert excinfo.value.credits == 60
    assert "120" in str(excinfo.value) and "60" in str(excinfo.value)


async def test_admit_and_charge(repo):
    repo.add_credits("u1", 200)
    admission = CreditAdmissionControl(repo, _host(120))
    result = await admission.admit("u1", URL)
    admission.charge("u1", result.required_credits)
    assert repo.get_credits("u1") == 80


def test_charge_fails_when_balance_dropped(repo):
    repo.add_credits("u1", 5)
    with pytest.raises(InsufficientCredits):
        CreditAdmissionControl(repo, _host(0)).charge("u1", 10)
    assert repo.get_credits("u1") == 5


async def test_invalid_url(repo):
    host = _host(1)
    with pytest.raises(InvalidRepositoryReference):
        await CreditAdmissionControl(repo, host).check("u1", "ftp://example.com/x")
    host.count_files.assert_not_awaited()


async def test_host_failure_propagates(repo):
    host = MagicMock()
    host.count_files = AsyncMock(side_effect=HostUnavailable("GitHub returned HTTP 404", 404))
    with pytest.raises(HostUnavailable):
        await CreditAdmissionControl(repo, host).check("u1", URL)
