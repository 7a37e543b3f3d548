"""Tests for repository cloning."""

from unittest.mock import AsyncMock, patch

import pytest

from querychain.github.clone import clone_dirname, clone_repository, clone_url
from querychain.utils.shell import CommandResult


@pytest.mark.unit
def test_clone_dirname_is_filesystem_safe():
    assert clone_dirname({"full_name": "octo/cat"}) == "octo__cat"
    assert clone_dirname({"full_name": "we ird/na:me"}) == "we_ird__na_me"
    assert clone_dirname({}) == "repository"


@pytest.mark.unit
def test_clone_url_prefers_record_field():
    assert clone_url({"clone_url": "https://h/x.git", "full_name": "a/b"}) == "https://h/x.git"
    assert clone_url({"full_name": "a/b"}) == "https://github.com/a/b.git"
    assert clone_url({"id": 1}) is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_shallow_clone_command(tmp_path):
    run = AsyncMock(return_value=CommandResult(error=None, returncode=0, stdout="", stderr=""))
    with patch("querychain.github.clone.run_shell", new=run):
        result = await clone_repository({"full_name": "octo/cat"}, tmp_path)

    command = run.await_args.args[0]
    assert command.startswith("git clone --quiet --depth 1 https://github.com/octo/cat.git")
    assert result.ok
    assert result.path == (tmp_path / "octo__cat").resolve()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_existing_checkout_reused(tmp_path):
    (tmp_path / "octo__cat" / ".git").mkdir(parents=True)
    run = AsyncMock()
    with patch("querychain.github.clone.run_shell", new=run):
        result = await clone_repository({"full_name": "octo/cat"}, tmp_path)

    run.assert_not_awaited()
    assert result.ok


@pytest.mark.unit
@pytest.mark.asyncio
async def test_partial_checkout_removed_before_clone(tmp_path):
    leftover = tmp_path / "octo__cat"
    leftover.mkdir()
    (leftover / "half.txt").write_text("x", encoding="utf-8")

    run = AsyncMock(return_value=CommandResult(error=None, returncode=0, stdout="", stderr=""))
    with patch("querychain.github.clone.run_shell", new=run):
        await clone_repository({"full_name": "octo/cat"}, tmp_path)

    assert not (leftover / "half.txt").exists()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failure_returns_error_with_git_message(tmp_path):
    failed = CommandResult(
        error="Command exited with status 128",
        returncode=128,
        stdout="",
        stderr="Cloning...\nfatal: repository not found\n",
    )
    with patch("querychain.github.clone.run_shell", new=AsyncMock(return_value=failed)):
        result = await clone_repository({"full_name": "octo/cat"}, tmp_path)

    assert not result.ok
    assert "repository not found" in result.error
