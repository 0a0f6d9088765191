import json
from pathlib import Path

from click.testing import CliRunner
import pytest

from codelibrarian.cli import cli
from codelibrarian.index.graph import CodeGraph


@pytest.fixture
def index_file(tmp_path: Path) -> Path:
    graph = CodeGraph()
    graph.add_entity(
        "func:src/auth/login.py#login",
        "function",
        name="login",
        file="src/auth/login.py",
        line=12,
        summary="Validate user credentials and issue a login token",
        language="python",
    )
    graph.add_entity(
        "type:src/auth/types.py#Session",
        "type",
        name="Session",
        file="src/auth/types.py",
        line=1,
        summary="Session token holder",
        language="python",
    )
    graph.add_edge("func:src/auth/login.py#login", "type:src/auth/types.py#Session", "uses")
    path = tmp_path / "index.json"
    graph.save(path)
    return path


def test_query_prints_ranked_packs(tmp_path: Path, index_file: Path):
    result = CliRunner().invoke(
        cli,
        ["query", "login token", "--index", str(index_file), "--workspace", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    assert "cache miss" in result.output
    assert "func:src/auth/login.py#login" in result.output
    assert "type:src/auth/types.py#Session" in result.output


def test_query_json_output(tmp_path: Path, index_file: Path):
    result = CliRunner().invoke(
        cli,
        [
            "query",
            "login token",
            "--index",
            str(index_file),
            "--workspace",
            str(tmp_path),
            "--depth",
            "L0",
            "--path-prefix",
            "src/auth",
            "--json",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["query"]["filter"]["path_prefix"] == "src/auth/"
    assert payload["cache_hit"] is False
    assert {pack["target_id"] for pack in payload["packs"]} == {
        "func:src/auth/login.py#login",
        "type:src/auth/types.py#Session",
    }


def test_query_uses_sqlite_cache_across_runs(tmp_path: Path, index_file: Path):
    args = [
        "query",
        "login token",
        "--index",
        str(index_file),
        "--workspace",
        str(tmp_path),
        "--cache-db",
        str(tmp_path / "cache.db"),
    ]
    runner = CliRunner()

    first = runner.invoke(cli, args)
    second = runner.invoke(cli, args)

    assert "cache miss" in first.output
    assert "cache hit" in second.output
    assert "note: cache_hit: l2" in second.output


def test_query_on_empty_index_reports_bootstrap(tmp_path: Path):
    path = tmp_path / "empty.json"
    CodeGraph().save(path)

    result = CliRunner().invoke(
        cli, ["query", "anything", "--index", str(path), "--workspace", str(tmp_path)]
    )

    assert result.exit_code == 1
    assert "Bootstrap required" in result.output


def test_classify_shows_bucket_and_signature():
    result = CliRunner().invoke(cli, ["classify", "how does auth work", "--depth", "L2"])

    assert result.exit_code == 0
    assert "category:   conceptual" in result.output
    assert "normalized: authentication" in result.output
    assert "signature:  path=*|lang=*|task=*|depth=L2" in result.output


def test_scope_auto_detects_package(tmp_path: Path):
    (tmp_path / "package.json").write_text(json.dumps({"workspaces": ["packages/*"]}))
    (tmp_path / "packages" / "api").mkdir(parents=True)

    result = CliRunner().invoke(
        cli,
        ["scope", "--workspace", str(tmp_path), "--working-file", "packages/api/src/routes.ts"],
    )

    assert result.exit_code == 0
    assert "path_prefix: packages/api/" in result.output
    assert "note: scope_auto_detected: packages/api/ (from workingFile)" in result.output


def test_scope_outside_workspace_fails(tmp_path: Path):
    workspace = tmp_path / "repo"
    workspace.mkdir()

    result = CliRunner().invoke(
        cli, ["scope", "--workspace", str(workspace), "--path-prefix", str(tmp_path / "other")]
    )

    assert result.exit_code == 1
    assert "outside workspace" in result.output


def test_stats(index_file: Path):
    result = CliRunner().invoke(cli, ["stats", "--index", str(index_file)])

    assert result.exit_code == 0
    assert "Nodes: 2" in result.output
    assert "uses: 1" in result.output


def test_query_with_malformed_config_reports_error(tmp_path: Path, index_file: Path):
    (tmp_path / ".codelibrarian.yml").write_text("cache: [unclosed\n")

    result = CliRunner().invoke(
        cli, ["query", "login token", "--index", str(index_file), "--workspace", str(tmp_path)]
    )

    assert result.exit_code == 1
    assert "Failed to parse" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
