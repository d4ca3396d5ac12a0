import json
from pathlib import Path

import pytest

from asset_pipeline.config import AssetConfig
from asset_pipeline.storage import FSBackend


def write_files(root: Path, files: dict) -> None:
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "S3_BUCKET",
        "S3_BUCKET_MAIN",
        "S3_ACCESS_KEY",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_KEY",
        "S3_SECRET_ACCESS_KEY",
        "S3_ENDPOINT",
        "S3_PUBLIC_ENDPOINT",
        "S3_REGION",
        "CDN_MAPPING",
        "STORAGE__TYPE",
        "STORAGE__FS_PATH",
        "STORAGE__FS_PUBLIC_URL",
        "STORAGE__TIMEOUT",
        "GITHUB_TOKEN",
        "JS_MINIFIER",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def tree(project):
    def _tree(files, root=None):
        write_files(root or project, files)
        return root or project

    return _tree


@pytest.fixture
def make_config(project):
    def _make(targets, **extra):
        data = {"root": ".", "targets": targets}
        data.update(extra)
        return AssetConfig.from_dict(data, base_dir=project)

    return _make


@pytest.fixture
def config_file(project):
    def _write(data, name="assetConfig.json"):
        path = project / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fs_storage(tmp_path, sleeps):
    return FSBackend(str(tmp_path / "bucket"), public_url="https://assets.example.com", sleep=sleeps.append)
