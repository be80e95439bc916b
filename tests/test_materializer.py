from __future__ import annotations

import importlib
import io
import sys
import tarfile
from pathlib import Path

import pytest
import requests
from fastapi.testclient import TestClient

from servicegen import materializer
from servicegen.descriptor import build_descriptor
from servicegen.materializer import MaterializeError, TemplateSource
from servicegen.service.config import load_config


def test_create_project_refuses_non_empty(tmp_path: Path) -> None:
    target = tmp_path / "svc"
    target.mkdir()
    (target / "keep.txt").write_text("x", encoding="utf-8")
    with pytest.raises(MaterializeError):
        materializer.create_project(target)
    materializer.create_project(target, overwrite=True)


def test_create_project_makes_directories(tmp_path: Path) -> None:
    target = tmp_path / "deep" / "svc"
    materializer.create_project(target)
    assert target.is_dir()


def test_bundled_template() -> None:
    root = materializer.fetch_template(TemplateSource(), Path("/unused"))
    for name in (*materializer.BOILERPLATE_FILES, materializer.CONF_TEMPLATE):
        assert (root / name).is_file()


def test_unknown_source(tmp_path: Path) -> None:
    with pytest.raises(MaterializeError):
        materializer.fetch_template(TemplateSource(kind="ftp", location="x"), tmp_path)
    with pytest.raises(MaterializeError):
        materializer.fetch_template(TemplateSource(kind="git"), tmp_path)


def test_materialize_copies_and_renders(tmp_path: Path) -> None:
    descriptor = build_descriptor(tmp_path, "devops-demo", "orders", port=9100)
    descriptor.project_dir.mkdir()
    template = materializer.fetch_template(TemplateSource(), tmp_path)

    result = materializer.materialize(descriptor, template)

    assert result.package_dir == tmp_path / "devops-demo" / "devops_demo"
    assert result.copied_files == len(materializer.BOILERPLATE_FILES)
    assert result.rendered_files == 3
    for name in materializer.BOILERPLATE_FILES:
        assert (result.package_dir / name).read_bytes() == (template / name).read_bytes()

    cfg = load_config(result.project_dir / "conf.yaml", env="prod")
    assert (cfg.project, cfg.app, cfg.port) == ("devops-demo", "orders", 9100)

    main_py = (result.project_dir / "main.py").read_text(encoding="utf-8")
    assert "from devops_demo import log" in main_py
    assert "{{" not in main_py
    assert "uvicorn" in (result.project_dir / "requirements.txt").read_text(encoding="utf-8")
    assert (result.project_dir / ".gitignore").exists()


@pytest.mark.parametrize("name", ["yes", "null", "a: b", "#x", 'say"hi', "{brace}", "ünï'code"])
def test_names_survive_rendering(tmp_path: Path, name: str) -> None:
    descriptor = build_descriptor(tmp_path, name, name)
    descriptor.project_dir.mkdir()
    result = materializer.materialize(descriptor, materializer.fetch_template(TemplateSource(), tmp_path))

    cfg = load_config(result.project_dir / "conf.yaml", env="prod")
    assert (cfg.project, cfg.app) == (name, name)
    main_py = result.project_dir / "main.py"
    compile(main_py.read_text(encoding="utf-8"), str(main_py), "exec")


def test_materialize_reports_missing_files(tmp_path: Path) -> None:
    template = tmp_path / "tpl"
    template.mkdir()
    (template / "log.py").write_text("", encoding="utf-8")
    descriptor = build_descriptor(tmp_path, "svc", "api")
    with pytest.raises(MaterializeError, match="config.py"):
        materializer.materialize(descriptor, template)


def test_materialize_rejects_unknown_template_variables(tmp_path: Path) -> None:
    template = tmp_path / "tpl"
    template.mkdir()
    for name in materializer.BOILERPLATE_FILES:
        (template / name).write_text("", encoding="utf-8")
    (template / materializer.CONF_TEMPLATE).write_text("name: {{ nope }}\n", encoding="utf-8")
    descriptor = build_descriptor(tmp_path, "svc", "api")
    with pytest.raises(MaterializeError):
        materializer.materialize(descriptor, template)


def test_generated_project_serves_requests(tmp_path: Path, monkeypatch) -> None:
    descriptor = build_descriptor(tmp_path, "smoke-svc", "api")
    descriptor.project_dir.mkdir()
    result = materializer.materialize(descriptor, materializer.fetch_template(TemplateSource(), tmp_path))

    monkeypatch.syspath_prepend(str(result.project_dir))
    monkeypatch.chdir(result.project_dir)
    app_module = importlib.import_module("smoke_svc.app")
    config_module = importlib.import_module("smoke_svc.config")
    log_module = importlib.import_module("smoke_svc.log")
    try:
        config = config_module.load_config("conf.yaml", env="dev")
        router = log_module.new_logger(config.log)
        client = TestClient(app_module.create_app(config))
        assert client.get("/api/").json() == {"status": True, "msg": "Hello World"}
        router.close()
    finally:
        log_module.reset()
        for name in [m for m in sys.modules if m == "smoke_svc" or m.startswith("smoke_svc.")]:
            del sys.modules[name]

    def count(level: str) -> int:
        return (result.project_dir / f"smoke-svc-api-{level}.log").read_text(encoding="utf-8").count("\n")

    # handler example records plus one access record
    assert (count("error"), count("warn"), count("info")) == (1, 1, 2)


def _tarball(files: dict[str, str]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class _FakeResponse:
    def __init__(self, body: bytes, status_code: int = 200) -> None:
        self.status_code = status_code
        self._body = body

    def iter_content(self, chunk_size: int = 1):
        yield self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def test_archive_source(tmp_path: Path, monkeypatch) -> None:
    body = _tarball({"repo-main/boilerplate/log.py": "# log\n", "repo-main/README.md": "hi\n"})
    calls = []

    def fake_get(url, **kwargs):
        calls.append(url)
        return _FakeResponse(body)

    monkeypatch.setattr(materializer.requests, "get", fake_get)
    root = materializer.fetch_template(
        TemplateSource(kind="archive", location="https://example.invalid/t.tar.gz", subdir="boilerplate"),
        tmp_path,
    )
    assert calls == ["https://example.invalid/t.tar.gz"]
    assert (root / "log.py").read_text(encoding="utf-8") == "# log\n"


def test_archive_http_error(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(materializer.requests, "get", lambda url, **kw: _FakeResponse(b"", status_code=404))
    with pytest.raises(MaterializeError, match="404"):
        materializer.fetch_template(TemplateSource(kind="archive", location="https://example.invalid/x"), tmp_path)


def test_archive_network_error(tmp_path: Path, monkeypatch) -> None:
    def boom(url, **kw):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(materializer.requests, "get", boom)
    with pytest.raises(MaterializeError):
        materializer.fetch_template(TemplateSource(kind="archive", location="https://example.invalid/x"), tmp_path)


def test_git_source_clones(tmp_path: Path, monkeypatch) -> None:
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        Path(cmd[-1]).mkdir(parents=True)
        return ""

    monkeypatch.setattr(materializer, "run", fake_run)
    root = materializer.fetch_template(TemplateSource(kind="git", location="https://example.invalid/t.git"), tmp_path)
    assert commands == [["git", "clone", "--depth", "1", "https://example.invalid/t.git", str(tmp_path / "template")]]
    assert root == tmp_path / "template"


def test_run_raises_with_output() -> None:
    with pytest.raises(MaterializeError, match="nope"):
        materializer.run([sys.executable, "-c", "import sys; print('nope'); sys.exit(3)"])


def test_check_tools_missing() -> None:
    with pytest.raises(MaterializeError, match="not installed"):
        materializer.check_tools(["servicegen-no-such-tool"])


def test_git_env() -> None:
    env = materializer.git_env({"GIT_AUTHOR_NAME": "me"}, deterministic=True)
    assert env["GIT_AUTHOR_NAME"] == "me"
    assert env["GIT_COMMITTER_DATE"] == "1970-01-01T00:00:00Z"
    assert "GIT_AUTHOR_DATE" not in materializer.git_env({}, deterministic=False)


def test_git_init_commands(tmp_path: Path, monkeypatch) -> None:
    commands = []
    monkeypatch.setattr(materializer, "run", lambda cmd, **kw: commands.append(cmd) or "")
    materializer.git_init(tmp_path)
    assert commands == [
        ["git", "init"],
        ["git", "checkout", "-B", "main"],
        ["git", "add", "-A"],
        ["git", "commit", "-m", "Initial commit"],
    ]
