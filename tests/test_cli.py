import pytest
from click.testing import CliRunner

from conftest import sse
from review_stream.cli.main import cli


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("api:\n  base_url: http://review.local:8000\n")
    return tmp_path


def _capture(workdir, *messages):
    path = workdir / "capture.sse"
    path.write_text("".join(messages), encoding="utf-8")
    return str(path)


def test_replay_prints_final_form_as_json(workdir):
    capture = _capture(
        workdir,
        sse({"type": "progress", "current": 1, "total": 1}),
        sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}}),
    )

    result = CliRunner().invoke(cli, ["replay", capture, "--chunk-size", "5", "--json"], obj={})

    assert result.exit_code == 0
    assert '"projectTitle": "X"' in result.output
    assert '"id": "significance"' in result.output


def test_replay_renders_session(workdir):
    capture = _capture(
        workdir,
        sse({"type": "reasoning", "reasoning": "thinking"}),
        sse({"type": "json_complete", "json_complete": {"projectInfo": {"projectTitle": "X"}}}),
    )

    result = CliRunner().invoke(cli, ["replay", capture], obj={})

    assert result.exit_code == 0
    assert "Analysis complete" in result.output
    assert "Analysis Log" in result.output


def test_replay_exits_nonzero_on_backend_error(workdir):
    capture = _capture(workdir, sse({"type": "error", "message": "model overloaded"}))

    result = CliRunner().invoke(cli, ["replay", capture, "--no-logs"], obj={})

    assert result.exit_code == 1
    assert "model overloaded" in result.output


def test_config_command_shows_effective_settings(workdir):
    result = CliRunner().invoke(cli, ["config"], obj={})

    assert result.exit_code == 0
    assert "api.base_url" in result.output
    assert "http://review.local:8000" in result.output
