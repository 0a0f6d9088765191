import json
from pathlib import Path

import pytest

from codelibrarian.query.errors import InvalidScopeError
from codelibrarian.query.scope import (
    clear_workspace_cache,
    derive_package_prefix,
    load_workspace_patterns,
    matches_package_glob,
    normalize_query_scope,
    to_workspace_relative,
)
from codelibrarian.query.types import Query, QueryFilter


@pytest.fixture(autouse=True)
def _fresh_manifest_cache():
    clear_workspace_cache()
    yield
    clear_workspace_cache()


@pytest.fixture
def npm_workspace(tmp_path: Path) -> Path:
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "root", "workspaces": ["packages/*", "./tools/cli"]})
    )
    (tmp_path / "packages" / "api" / "src").mkdir(parents=True)
    (tmp_path / "tools" / "cli").mkdir(parents=True)
    return tmp_path


def test_package_json_patterns_are_normalized(npm_workspace: Path):
    assert load_workspace_patterns(npm_workspace) == ("packages/*", "tools/cli")


def test_pnpm_and_pyproject_manifests_are_read(tmp_path: Path):
    (tmp_path / "pnpm-workspace.yaml").write_text("packages:\n  - 'apps/*'\n  - '!apps/legacy'\n")
    (tmp_path / "pyproject.toml").write_text(
        '[tool.uv.workspace]\nmembers = ["libs/*"]\n'
    )
    assert load_workspace_patterns(tmp_path) == ("apps/*", "libs/*")


def test_unreadable_manifest_is_ignored(tmp_path: Path):
    (tmp_path / "package.json").write_text("{not json")
    assert load_workspace_patterns(tmp_path) == ()


def test_package_glob_matching():
    assert matches_package_glob("packages/api", "packages/*")
    assert not matches_package_glob("packages/api/src", "packages/*")
    assert matches_package_glob("services/a/b", "services/**")
    assert not matches_package_glob("other/api", "packages/*")


def test_to_workspace_relative(tmp_path: Path):
    assert to_workspace_relative(tmp_path, str(tmp_path / "src" / "a.py")) == "src/a.py"
    assert to_workspace_relative(tmp_path, str(tmp_path)) == ""
    assert to_workspace_relative(tmp_path, "../elsewhere") is None


def test_absolute_prefix_becomes_relative_with_trailing_slash(tmp_path: Path):
    query = Query(
        intent="where is auth",
        filter=QueryFilter(path_prefix=str(tmp_path / "src" / "auth"), language=" TypeScript "),
    )

    result = normalize_query_scope(query, tmp_path)

    assert result.query.path_prefix == "src/auth/"
    assert result.query.language == "typescript"
    assert result.disclosures == ()


def test_relative_prefix_gets_trailing_slash(tmp_path: Path):
    query = Query(intent="x", filter=QueryFilter(path_prefix="src/auth"))
    assert normalize_query_scope(query, tmp_path).query.path_prefix == "src/auth/"


def test_prefix_outside_workspace_is_rejected(tmp_path: Path):
    workspace = tmp_path / "repo"
    workspace.mkdir()
    query = Query(intent="x", filter=QueryFilter(path_prefix=str(tmp_path / "other")))

    with pytest.raises(InvalidScopeError) as exc_info:
        normalize_query_scope(query, workspace)
    assert exc_info.value.path == str(tmp_path / "other")


def test_prefix_equal_to_root_clears_scope(tmp_path: Path):
    query = Query(intent="x", filter=QueryFilter(path_prefix=str(tmp_path)))
    result = normalize_query_scope(query, tmp_path)
    assert result.query.filter is None


def test_working_file_auto_detects_package_scope(npm_workspace: Path):
    query = Query(intent="how are routes registered", working_file="packages/api/src/routes.ts")

    result = normalize_query_scope(query, npm_workspace)

    assert result.query.path_prefix == "packages/api/"
    assert result.disclosures == ("scope_auto_detected: packages/api/ (from workingFile)",)
    assert result.query.working_file == str((npm_workspace / "packages/api/src/routes.ts").resolve())


def test_explicit_prefix_wins_over_working_file(npm_workspace: Path):
    query = Query(
        intent="x",
        working_file="packages/api/src/routes.ts",
        filter=QueryFilter(path_prefix="tools/cli"),
    )

    result = normalize_query_scope(query, npm_workspace)

    assert result.query.path_prefix == "tools/cli/"
    assert result.disclosures == ()


def test_no_manifest_leaves_scope_unset(tmp_path: Path):
    query = Query(intent="x", working_file="src/deep/file.py")

    result = normalize_query_scope(query, tmp_path)

    assert result.query.filter is None
    assert result.disclosures == ()
    assert derive_package_prefix(tmp_path, "src/deep/file.py") is None


def test_affected_files_pass_through_unchanged(npm_workspace: Path):
    affected = ("packages/api/src/a.ts", "/abs/elsewhere/b.ts")
    query = Query(intent="x", affected_files=affected)

    result = normalize_query_scope(query, npm_workspace)

    assert result.query.affected_files == affected
