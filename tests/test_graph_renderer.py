import os
import subprocess

import pytest

from analyzers import graph_renderer
from analyzers.graph_renderer import RenderError, render_graph


@pytest.fixture
def tools(monkeypatch):
    monkeypatch.setattr(graph_renderer.shutil, "which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def config_dir(tmp_path):
    d = tmp_path / "run-abc" / "tf" / "demo_server"
    d.mkdir(parents=True)
    (d / "main.tf").write_text("")
    return d


def test_runs_init_graph_dot_with_explicit_cwd(monkeypatch, tools, config_dir):
    calls = []

    def _fake_run(cmd, cwd=None, input=None, capture_output=False, check=False, timeout=None):
        calls.append({"cmd": cmd, "cwd": cwd, "input": input, "timeout": timeout})
        out = b"digraph { a -> b }" if cmd[1:] == ["graph"] else b""
        return subprocess.CompletedProcess(cmd, 0, stdout=out, stderr=b"")

    monkeypatch.setattr(graph_renderer.subprocess, "run", _fake_run)
    before = os.getcwd()
    out = config_dir.parent.parent / "graph.png"

    assert render_graph(config_dir, out, timeout_s=9) == out

    assert [c["cmd"][0:2] for c in calls] == [
        ["/usr/bin/terraform", "init"],
        ["/usr/bin/terraform", "graph"],
        ["/usr/bin/dot", "-Tpng"],
    ]
    assert calls[2]["cmd"][-1] == str(out)
    assert calls[2]["input"] == b"digraph { a -> b }"
    assert all(c["cwd"] == str(config_dir) for c in calls)
    assert all(c["timeout"] == 9 for c in calls)
    assert os.getcwd() == before


def test_missing_directory(tools, tmp_path):
    with pytest.raises(RenderError, match="not found"):
        render_graph(tmp_path / "nope", tmp_path / "graph.png")


def test_non_zero_exit_stops_the_chain(monkeypatch, tools, config_dir):
    calls = []

    def _fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, 1, stdout=b"", stderr=b"Error: Failed to query providers")

    monkeypatch.setattr(graph_renderer.subprocess, "run", _fake_run)
    with pytest.raises(RenderError) as ei:
        render_graph(config_dir, config_dir / "graph.png")
    assert ei.value.exit_code == 1
    assert "Failed to query providers" in str(ei.value)
    assert len(calls) == 1


def test_timeout_becomes_render_error(monkeypatch, tools, config_dir):
    def _slow(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"), stderr=b"still downloading")

    monkeypatch.setattr(graph_renderer.subprocess, "run", _slow)
    with pytest.raises(RenderError) as ei:
        render_graph(config_dir, config_dir / "graph.png", timeout_s=3)
    assert ei.value.exit_code == 124
    assert "timed out after 3s" in ei.value.stderr


def test_missing_tool(monkeypatch, config_dir):
    monkeypatch.setattr(graph_renderer.shutil, "which", lambda name: None)
    with pytest.raises(RenderError) as ei:
        render_graph(config_dir, config_dir / "graph.png", terraform_bin="terraform-nope")
    assert ei.value.exit_code == 127
    assert ei.value.cmd == ["terraform-nope"]
