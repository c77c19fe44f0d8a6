"""
Tests for image validation and storage.
"""

import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

import uploads
from errors import InvalidInput


def _upload(name, content_type, data=b"img"):
    return UploadFile(file=io.BytesIO(data), filename=name, headers=Headers({"content-type": content_type}))


def test_save_images_keeps_order_and_names(images_dir):
    files = [_upload("a.png", "image/png", b"a"), _upload("b.jpeg", "image/jpeg", b"b"),
             _upload("c", "image/webp", b"c")]
    paths = uploads.save_images(files)

    assert len(paths) == 3
    assert all(p.startswith("images/images-") for p in paths)
    assert [p.rsplit(".", 1)[1] for p in paths] == ["png", "jpg", "webp"]
    assert len(set(paths)) == 3
    contents = [(images_dir / p.split("/", 1)[1]).read_bytes() for p in paths]
    assert contents == [b"a", b"b", b"c"]


def test_no_files_is_empty(images_dir):
    assert uploads.save_images(None) == []
    assert uploads.save_images([]) == []


def test_invalid_type_rejects_batch(images_dir):
    with pytest.raises(InvalidInput):
        uploads.save_images([_upload("a.png", "image/png"), _upload("x.pdf", "application/pdf")])
    assert list(images_dir.iterdir()) == []


def test_too_many_files(images_dir):
    with pytest.raises(InvalidInput):
        uploads.save_images([_upload(f"{i}.png", "image/png") for i in range(4)])


def test_discard_removes_files_and_ignores_missing(images_dir):
    paths = uploads.save_images([_upload("a.png", "image/png")])
    uploads.discard(paths + ["images/never-written.png"])
    assert list(images_dir.iterdir()) == []


def test_extension_comes_from_mime_type(images_dir):
    paths = uploads.save_images([_upload("x.html", "image/png", b"<script>alert(1)</script>")])
    assert paths[0].endswith(".png")
    assert [p.suffix for p in images_dir.iterdir()] == [".png"]


def test_same_millisecond_uploads_get_distinct_files(images_dir, monkeypatch):
    monkeypatch.setattr(uploads.time, "time", lambda: 1000.0)
    first = uploads.save_images([_upload("a.png", "image/png", b"first")])
    second = uploads.save_images([_upload("b.png", "image/png", b"second")])

    assert first == ["images/images-1000000.png"]
    assert second == ["images/images-1000001.png"]
    assert (images_dir / "images-1000000.png").read_bytes() == b"first"
    assert (images_dir / "images-1000001.png").read_bytes() == b"second"


def test_existing_file_is_never_overwritten(images_dir, monkeypatch):
    monkeypatch.setattr(uploads.time, "time", lambda: 1000.0)
    (images_dir / "images-1000000.png").write_bytes(b"taken")
    paths = uploads.save_images([_upload("a.png", "image/png", b"new")])
    assert paths == ["images/images-1000001.png"]
    assert (images_dir / "images-1000000.png").read_bytes() == b"taken"
