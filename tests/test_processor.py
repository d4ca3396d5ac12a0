import gzip
import hashlib

import pytest

from asset_pipeline.events import RecordingListener
from asset_pipeline.exceptions import ConfigurationError, TransportError
from asset_pipeline.minifiers import JsBundle
from asset_pipeline.processor import AssetProcessor


class MapMinifier:
    def minify(self, files, source_map_url=None):
        return JsBundle(code="bundle();\n//# sourceMappingURL=" + str(source_map_url), source_map='{"version":3}')


def make_processor(config, storage, **kwargs):
    recorder = RecordingListener()
    processor = AssetProcessor(config, storage=storage, listeners=[recorder], **kwargs)
    return processor, recorder


def test_end_to_end_publish(tree, make_config, fs_storage):
    tree({"js/a.js": "A", "js/b.js": "B"})
    config = make_config({"javascripts": {"directories": ["js"]}})
    processor, recorder = make_processor(config, fs_storage)
    digest = hashlib.md5(b"AB").hexdigest()

    assert processor.get_javascript_files() == ["js/a.js", "js/b.js"]

    first = processor.ensure_assets()
    assert first.js.url == f"https://assets.example.com/js/{digest}.js"
    assert first.js.changed is True
    assert recorder.names("js") == [
        "files-checked",
        "minify-started",
        "minify-ended",
        "upload-started",
        "upload-ended",
    ]

    recorder.events.clear()
    second = processor.ensure_assets()
    assert second.js.url == first.js.url
    assert second.js.changed is False
    assert not [e for e in recorder.events if e.name.startswith("upload")]
    assert second.as_dict() == {
        "jsUrl": first.js.url,
        "jsChanged": False,
        "cssUrl": None,
        "cssChanged": False,
        "imagesUrl": None,
        "imagesChanged": False,
        "extrasUrl": None,
        "extrasChanged": False,
    }


def test_bundles_uploaded_gzipped(tree, make_config, fs_storage):
    tree({"css/site.css": "body {\n  color: red;\n}\n"})
    config = make_config({"stylesheets": {"directories": ["css"]}})
    processor, recorder = make_processor(config, fs_storage)

    result = processor.ensure_assets()

    key = result.css.url[len("https://assets.example.com/"):]
    assert key.startswith("css/") and key.endswith(".css")
    stored = (fs_storage.base_path / key).read_bytes()
    assert gzip.decompress(stored).decode().startswith("body{color:red")
    uploaded = [e for e in recorder.events if e.name == "upload-ended"]
    assert uploaded[0].payload() == {"type": "css", "target": key, "source": "memory", "url": result.css.url}


def test_upload_headers(tree, make_config):
    tree({"js/a.js": "var a = 1;"})
    config = make_config({"javascripts": {"directories": ["js"]}})
    puts = []

    class RecordingStorage:
        def file_exists(self, key):
            return False

        def url_with_bucket(self, key=None):
            return f"https://cdn/{key}"

        def put_buffer(self, body, key, headers=None):
            puts.append((key, headers))
            return f"https://cdn/{key}"

    processor = AssetProcessor(config, storage=RecordingStorage(), js_minifier=MapMinifier())
    processor.ensure_assets()

    (js_key, js_headers), (map_key, map_headers) = puts
    assert js_headers["Content-Encoding"] == "gzip"
    assert js_headers["Content-Type"] == "application/javascript"
    assert js_headers["Cache-Control"] == "public, max-age=31536000"
    assert js_headers["x-amz-acl"] == "public-read"
    assert map_key == js_key[: -len(".js")] + ".map"


def test_source_map_uploaded_and_excludable(tree, make_config, fs_storage):
    tree({"js/a.js": "A"})
    config = make_config({"javascripts": {"directories": ["js"]}})
    processor, recorder = make_processor(config, fs_storage, js_minifier=MapMinifier())

    result = processor.ensure_assets()
    key = result.js.url[len("https://assets.example.com/"):]
    map_key = key[: -len(".js")] + ".map"

    assert (fs_storage.base_path / map_key).read_text() == '{"version":3}'
    code = gzip.decompress((fs_storage.base_path / key).read_bytes()).decode()
    assert code.endswith(f"https://assets.example.com/{map_key}")
    assert [e.target for e in recorder.events if e.name == "upload-started"] == [key, map_key]

    (fs_storage.base_path / key).unlink()
    (fs_storage.base_path / map_key).unlink()
    processor.ensure_assets(exclude_source_map=True)
    assert (fs_storage.base_path / key).exists()
    assert not (fs_storage.base_path / map_key).exists()


def test_force_republishes_every_class(tree, make_config, fs_storage):
    tree({"js/a.js": "A", "css/a.css": "a{}", "img/logo.png": b"\x89PNG"})
    config = make_config(
        {
            "javascripts": {"directories": ["js"]},
            "stylesheets": {"directories": ["css"]},
            "images": {"root": "img"},
        }
    )
    processor, recorder = make_processor(config, fs_storage)
    processor.ensure_assets()
    recorder.events.clear()

    result = processor.ensure_assets(force=True)

    assert result.js.changed and result.css.changed and result.images.changed
    assert [e.type for e in recorder.events if e.name == "upload-ended"] == ["js", "css", "image", "image"]
    assert [e.changed for e in recorder.events if e.name == "files-checked"] == [False, False, False, False]


def test_force_default_from_config(tree, make_config, fs_storage):
    tree({"js/a.js": "A"})
    config = make_config({"javascripts": {"directories": ["js"]}}, forceUpdate=True)
    processor, _ = make_processor(config, fs_storage)

    processor.ensure_assets()

    assert processor.ensure_assets().js.changed is True
    assert processor.ensure_assets(force=False).js.changed is False


def test_images_uploaded_with_marker(project, tree, make_config, fs_storage):
    tree({"public/img/logo.png": b"\x89PNG", "public/img/icons/a.svg": "<svg/>", "public/img/notes.txt": "x"})
    config = make_config({"images": {"root": "public/img"}})
    processor, recorder = make_processor(config, fs_storage)

    result = processor.ensure_assets()

    assert result.images.url == "https://assets.example.com/public"
    assert result.images.changed is True
    assert (fs_storage.base_path / "public" / "logo.png").read_bytes() == b"\x89PNG"
    assert (fs_storage.base_path / "public" / "icons" / "a.svg").exists()
    assert not (fs_storage.base_path / "public" / "notes.txt").exists()

    image_events = [e for e in recorder.events if e.type == "image"]
    assert [e.name for e in image_events] == [
        "files-checked",
        "upload-started",
        "upload-ended",
        "upload-started",
        "upload-ended",
        "upload-started",
        "upload-ended",
    ]
    marker = image_events[-1].target
    assert marker.startswith("public/") and marker.endswith(".txt")
    assert image_events[-1].source == "memory"
    assert (fs_storage.base_path / marker).read_text() == "public/img/icons/a.svg\npublic/img/logo.png"

    assert processor.ensure_assets().images.changed is False


def test_renamed_image_changes_marker(project, tree, make_config, fs_storage):
    tree({"img/a.png": b"PNG"})
    config = make_config({"images": {"root": "img"}})
    processor, _ = make_processor(config, fs_storage)
    processor.ensure_assets()

    (project / "img" / "a.png").rename(project / "img" / "b.png")

    assert processor.ensure_assets().images.changed is True


def test_missing_storage(tree, make_config):
    tree({"js/a.js": "A"})
    processor = AssetProcessor(make_config({"javascripts": {"directories": ["js"]}}), storage=None)

    with pytest.raises(ConfigurationError):
        processor.ensure_assets()


def test_existence_check_failure_aborts(tree, make_config, fs_storage, monkeypatch):
    tree({"js/a.js": "A"})
    processor, recorder = make_processor(make_config({"javascripts": {"directories": ["js"]}}), fs_storage)

    def broken(key):
        raise TransportError(key, "timeout")

    monkeypatch.setattr(fs_storage, "file_exists", broken)

    with pytest.raises(TransportError):
        processor.ensure_assets()
    assert recorder.events == []


def test_process_assets_builds_locally(project, tree, make_config):
    tree({"js/a.js": "var a = 1;", "css/a.css": "a { color: red; }"})
    config = make_config({"javascripts": {"directories": ["js"]}, "stylesheets": {"directories": ["css"]}})
    processor = AssetProcessor(config, storage=None)

    result = processor.process_assets()

    assert result["jsUrl"].startswith("/js/") and result["jsUrl"].endswith(".js")
    assert result["cssUrl"].startswith("/css/") and result["cssUrl"].endswith(".css")
    assert result["imagesUrl"] == "" and result["extrasUrl"] == ""
    assert "var a=1" in (project / result["jsUrl"].lstrip("/")).read_text()


def test_file_listing_accessors(project, tree, make_config):
    tree({"public/css/a.css": "", "extra/robots.txt": ""})
    config = make_config({"stylesheets": {"root": "public"}, "extras": {"root": "extra"}})
    processor = AssetProcessor(config, storage=None)

    assert processor.get_css_files() == ["public/css/a.css"]
    assert processor.get_extra_files() == ["extra/robots.txt"]
    assert processor.get_image_files() == []
    assert processor.get_css_files(absolute=True) == [str(project / "public" / "css" / "a.css")]


def test_compile_less_files_uses_stylesheet_target(project, tree, make_config):
    tree({"css/a.less": "a{}"})

    class Renderer:
        def render(self, source, filename):
            return "a{color:red}"

    config = make_config({"stylesheets": {"directories": ["css"]}})
    processor = AssetProcessor(config, storage=None, less_renderer=Renderer())

    assert processor.compile_less_files() == [str(project / "css" / "a.css")]
    assert processor.get_css_files() == ["css/a.css"]


def test_import_latest_stylesheets(project, make_config):
    (project / "css").mkdir()
    calls = []

    class Importer:
        def import_all(self, sources, dest_dir, mappings):
            calls.append((sources, dest_dir, mappings))
            return len(sources)

    config = make_config(
        {
            "stylesheets": {
                "root": "css",
                "imports": {"sources": ["a", "b"], "destination": "vendor", "mappings": {"x": "y"}},
            }
        }
    )
    processor = AssetProcessor(config, storage=None, git_importer=Importer())

    assert processor.import_latest_stylesheets() == 2
    assert calls == [(("a", "b"), str(project / "css" / "vendor"), (("x", "y"),))]


def test_direct_upload_verbs(project, tree, make_config, fs_storage):
    tree({"js/a.js": "A", "css/a.css": "a{}", "img/logo.png": b"PNG", "extra/robots.txt": "User-agent: *"})
    config = make_config(
        {
            "javascripts": {"directories": ["js"]},
            "stylesheets": {"directories": ["css"]},
            "images": {"root": "img"},
            "extras": {"root": "extra"},
        }
    )
    processor, recorder = make_processor(config, fs_storage)

    js_url = processor.upload_javascript()
    css_url = processor.upload_css()

    assert js_url == f"https://assets.example.com/js/{hashlib.md5(b'A').hexdigest()}.js"
    assert css_url.startswith("https://assets.example.com/css/")
    assert processor.upload_images() == "https://assets.example.com/img"
    assert processor.upload_extras() == "https://assets.example.com/extra"
    assert (fs_storage.base_path / "img" / "logo.png").read_bytes() == b"PNG"
    assert (fs_storage.base_path / "extra" / "robots.txt").exists()
    assert "files-checked" not in recorder.names()


def test_css_key_follows_rebase_root(tree, make_config, fs_storage):
    tree({"public/css/a.css": "a{background:url(../img/x.png)}"})
    source = b"a{background:url(../img/x.png)}"
    default = AssetProcessor(make_config({"stylesheets": {"root": "public"}}), storage=fs_storage)
    rebased = AssetProcessor(make_config({"stylesheets": {"root": "public", "rebaseRoot": "public"}}), storage=fs_storage)

    default_url = default.upload_css()
    rebased_url = rebased.upload_css()

    assert default_url == f"https://assets.example.com/css/{hashlib.md5(source).hexdigest()}.css"
    assert rebased_url == f"https://assets.example.com/css/{hashlib.md5(source + b'public').hexdigest()}.css"

    def stored(url):
        key = url[len("https://assets.example.com/"):]
        return gzip.decompress((fs_storage.base_path / key).read_bytes()).decode()

    assert "url(/public/img/x.png)" in stored(default_url)
    assert "url(/img/x.png)" in stored(rebased_url)
