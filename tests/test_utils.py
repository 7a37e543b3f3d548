"""
Utility Tests
=============
Filesystem helpers, shell execution, locked JSON I/O and schema validation.
"""

import time
from pathlib import Path

import pytest

from querychain.utils.filesystem import (
    count_lines,
    exclude_ancestors,
    filter_by_ancestors,
    filter_by_extension,
    walk_files,
)
from querychain.utils.json_io import lock_path_for, read_json_object, write_json_atomic
from querychain.utils.schema_validation import validate_chain_definition
from querychain.utils.shell import run_shell
from querychain.utils.subprocess_env import build_minimal_subprocess_env


def _touch(root: Path, rel: str, text: str = "x\n") -> Path:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


class TestFilesystem:
    @pytest.mark.unit
    def test_walk_is_sorted_and_skips_vcs_dirs(self, tmp_path):
        _touch(tmp_path, "b.txt")
        _touch(tmp_path, "a/z.txt")
        _touch(tmp_path, ".git/config")

        files = [p.relative_to(tmp_path).as_posix() for p in walk_files(tmp_path)]

        assert files == ["b.txt", "a/z.txt"]

    @pytest.mark.unit
    def test_walk_missing_root(self, tmp_path):
        assert walk_files(tmp_path / "nope") == []

    @pytest.mark.unit
    def test_filter_by_extension_accepts_several(self, tmp_path):
        paths = [tmp_path / "a.go", tmp_path / "b.py", tmp_path / "c.md"]
        assert filter_by_extension(paths, [".go", ".py"]) == paths[:2]

    @pytest.mark.unit
    def test_ancestor_filters_ignore_folders_above_root(self, tmp_path):
        root = tmp_path / "src"
        inside = _touch(root, "lib/x.go")
        top = _touch(root, "y.go")

        # "src" is the root itself, not an ancestor below it
        assert filter_by_ancestors([inside, top], root, ["src"]) == []
        assert filter_by_ancestors([inside, top], root, ["lib"]) == [inside]
        assert exclude_ancestors([inside, top], root, [], ["lib"]) == [top]

    @pytest.mark.unit
    def test_count_lines_skips_blank(self, tmp_path):
        p = _touch(tmp_path, "f.go", "a\n\n   \nb\nc")
        assert count_lines(p) == 3
        assert count_lines(tmp_path / "missing.go") == 0


class TestShell:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_captures_stdout(self, tmp_path):
        result = await run_shell("pwd", cwd=tmp_path)
        assert result.ok
        assert result.returncode == 0
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_zero_exit_is_data(self):
        result = await run_shell("exit 3")
        assert not result.ok
        assert result.returncode == 3
        assert "3" in result.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_cwd_is_data(self, tmp_path):
        result = await run_shell("true", cwd=tmp_path / "gone")
        assert result.returncode is None
        assert "does not exist" in result.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        result = await run_shell("sleep 5", timeout=0.2)
        assert result.error is not None
        assert "timed out" in result.error

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_children_of_compound_command(self):
        started = time.monotonic()
        result = await run_shell("sleep 6; echo done", timeout=0.5)
        elapsed = time.monotonic() - started

        assert elapsed < 3
        assert "timed out" in result.error
        assert "done" not in result.stdout

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sanitized_env_hides_token(self, monkeypatch):
        monkeypatch.setenv("GITHUB_TOKEN", "secret")
        result = await run_shell("echo ${GITHUB_TOKEN:-unset}", sanitize_env=True)
        assert result.stdout.strip() == "unset"

    @pytest.mark.unit
    def test_minimal_env_disables_git_prompt(self, monkeypatch):
        monkeypatch.setenv("SOME_SECRET", "x")
        env = build_minimal_subprocess_env(sanitize_env=True)
        assert env["GIT_TERMINAL_PROMPT"] == "0"
        assert "SOME_SECRET" not in env

        inherited = build_minimal_subprocess_env(sanitize_env=False)
        assert inherited["SOME_SECRET"] == "x"


class TestJsonIO:
    @pytest.mark.unit
    def test_atomic_write_and_read(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        write_json_atomic(path, {"a": 1})

        assert read_json_object(path) == {"a": 1}
        assert not path.with_suffix(".json.tmp").exists()
        assert lock_path_for(path).name == "data.json.lock"

    @pytest.mark.unit
    def test_read_rejects_non_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError, match="Expected a JSON object"):
            read_json_object(path)

    @pytest.mark.unit
    def test_read_missing_is_none(self, tmp_path):
        assert read_json_object(tmp_path / "absent.json") is None


class TestSchemaValidation:
    @pytest.mark.unit
    def test_definition_requires_steps(self):
        with pytest.raises(ValueError, match="steps"):
            validate_chain_definition({"name": "c", "source": {"type": "query"}})

    @pytest.mark.unit
    def test_definition_name_pattern(self):
        with pytest.raises(ValueError, match="name"):
            validate_chain_definition({"name": "a b", "source": {"type": "file"}, "steps": []})
