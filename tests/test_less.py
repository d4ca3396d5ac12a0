import subprocess

import pytest

from asset_pipeline.config import TargetConfig
from asset_pipeline.exceptions import CompileError, ConfigurationError
from asset_pipeline.less import LesscRenderer, compile_less_files
from asset_pipeline.selection import PathMatcher


class DummyRenderer:
    def __init__(self, fail_on=None):
        self.rendered = []
        self.fail_on = fail_on

    def render(self, source, filename):
        self.rendered.append(filename)
        if self.fail_on and filename.endswith(self.fail_on):
            raise CompileError(filename, "Unrecognised input")
        return source.replace("@color", "red")


def test_less_files_compiled_next_to_sources(project, tree):
    tree({"css/a.less": "a{color:@color}", "css/b.less": "b{color:@color}", "css/c.css": "c{}"})
    renderer = DummyRenderer()
    target = TargetConfig(directories=("css",), extensions=(".css",))

    written = compile_less_files(PathMatcher(str(project)), target, str(project), renderer)

    assert written == [str(project / "css" / "a.css"), str(project / "css" / "b.css")]
    assert (project / "css" / "a.css").read_text() == "a{color:red}"
    assert [name.rsplit("/", 1)[-1] for name in renderer.rendered] == ["a.less", "b.less"]


def test_first_failure_aborts(project, tree):
    tree({"css/a.less": "a{}", "css/b.less": "b{}", "css/c.less": "c{}"})
    renderer = DummyRenderer(fail_on="b.less")
    target = TargetConfig(directories=("css",), extensions=(".css",))

    with pytest.raises(CompileError) as excinfo:
        compile_less_files(PathMatcher(str(project)), target, str(project), renderer)

    assert excinfo.value.filename.endswith("b.less")
    assert len(renderer.rendered) == 2
    assert (project / "css" / "a.css").exists()
    assert not (project / "css" / "c.css").exists()


def test_undecodable_less_source(project, tree):
    tree({"css/a.less": b"a{content:'\xe9'}"})
    target = TargetConfig(directories=("css",), extensions=(".css",))
    renderer = DummyRenderer()

    with pytest.raises(CompileError) as excinfo:
        compile_less_files(PathMatcher(str(project)), target, str(project), renderer)

    assert excinfo.value.filename.endswith("a.less")
    assert renderer.rendered == []


def test_no_less_files(project, tree):
    tree({"css/site.css": ""})
    target = TargetConfig(directories=("css",), extensions=(".css",))

    assert compile_less_files(PathMatcher(str(project)), target, str(project), DummyRenderer()) == []


def test_lessc_renderer_runs_subprocess(monkeypatch, tmp_path):
    calls = []

    def fake_run(args, **kwargs):
        calls.append((args, kwargs))
        return subprocess.CompletedProcess(args, 0, stdout="a{color:red}", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)
    renderer = LesscRenderer(executable="lessc")

    css = renderer.render("a{color:red}", str(tmp_path / "a.less"))

    assert css == "a{color:red}"
    args, kwargs = calls[0]
    assert args == ["lessc", f"--include-path={tmp_path}", "-"]
    assert kwargs["input"] == "a{color:red}"
    assert kwargs["cwd"] == str(tmp_path)


def test_lessc_failure_becomes_compile_error(monkeypatch, tmp_path):
    def fake_run(args, **kwargs):
        raise subprocess.CalledProcessError(1, args, stderr="ParseError: missing closing `}`")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(CompileError, match="ParseError"):
        LesscRenderer(executable="lessc").render("a{", str(tmp_path / "a.less"))


def test_lessc_missing(monkeypatch, tmp_path):
    monkeypatch.delenv("LESSC_PATH", raising=False)
    monkeypatch.setattr("shutil.which", lambda name: None)

    with pytest.raises(ConfigurationError):
        LesscRenderer().render("a{}", str(tmp_path / "a.less"))
