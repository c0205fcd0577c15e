"""
Tests for UploadHandler: batch validation, naming, cleanup and bulk deletion.
"""

import asyncio
from io import BytesIO

import pytest
from starlette.datastructures import Headers, UploadFile

from print_order_backend.errors import StorageFailure, StoredFileNotFoundError, UploadTimeoutError, ValidationError
from print_order_backend.uploads import UploadHandler, describe_size
from print_order_backend.utils import sanitize_filename

PDF = "application/pdf"


def make_upload(name, content, content_type=PDF):
    return UploadFile(BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


class SlowUpload:
    """Yields one chunk, then stalls forever."""

    def __init__(self, name="slow.pdf"):
        self.filename = name
        self.content_type = PDF
        self.closed = False
        self._sent = False

    async def read(self, size=-1):
        if not self._sent:
            self._sent = True
            return b"%PDF partial"
        await asyncio.sleep(3600)
        return b""

    async def close(self):
        self.closed = True


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def handler(upload_dir):
    handler = UploadHandler(upload_dir, allowed_types=[PDF], max_file_bytes=100, timeout_seconds=5)
    handler.ensure_sentinel()
    return handler


def listing(path):
    return sorted(p.name for p in path.iterdir())


class TestSaveBatch:
    def test_returns_refs_in_order(self, handler):
        refs = asyncio.run(handler.save_batch([make_upload("b.pdf", b"bb"), make_upload("a.pdf", b"a")]))
        assert [ref.name for ref in refs] == ["b.pdf", "a.pdf"]
        assert [ref.size for ref in refs] == [2, 1]
        assert all(ref.path.startswith("/uploads/") for ref in refs)

    def test_stored_content_matches(self, handler, upload_dir):
        ref = asyncio.run(handler.save_batch([make_upload("a.pdf", b"%PDF data")]))[0]
        stored = upload_dir / ref.path.rsplit("/", 1)[-1]
        assert stored.read_bytes() == b"%PDF data"

    def test_empty_batch(self, handler):
        with pytest.raises(ValidationError, match="No files uploaded"):
            asyncio.run(handler.save_batch([]))

    def test_disallowed_type_writes_nothing(self, handler, upload_dir):
        before = listing(upload_dir)
        batch = [make_upload("ok.pdf", b"ok"), make_upload("evil.exe", b"MZ", "application/x-msdownload")]
        with pytest.raises(ValidationError):
            asyncio.run(handler.save_batch(batch))
        assert listing(upload_dir) == before

    def test_oversized_file_discards_earlier_files(self, handler, upload_dir):
        batch = [make_upload("ok.pdf", b"x" * 100), make_upload("big.pdf", b"x" * 101)]
        with pytest.raises(ValidationError, match="Maximum size is 100 bytes"):
            asyncio.run(handler.save_batch(batch))
        assert listing(upload_dir) == [".gitkeep"]

    def test_timeout_discards_partial_files(self, upload_dir):
        handler = UploadHandler(upload_dir, allowed_types=[PDF], max_file_bytes=100, timeout_seconds=0.1)
        slow = SlowUpload()
        with pytest.raises(UploadTimeoutError):
            asyncio.run(handler.save_batch([make_upload("fast.pdf", b"fast"), slow]))
        assert listing(upload_dir) == []
        assert slow.closed

    def test_identical_names_are_distinct(self, handler):
        refs = asyncio.run(handler.save_batch([make_upload("same.pdf", b"1"), make_upload("same.pdf", b"2")]))
        assert refs[0].path != refs[1].path
        assert refs[0].name == refs[1].name == "same.pdf"

    def test_name_collision_is_a_hard_failure(self, handler, upload_dir, monkeypatch):
        monkeypatch.setattr(handler, "_stored_name", lambda original: "fixed-name.pdf")
        (upload_dir / "fixed-name.pdf").write_bytes(b"existing")

        with pytest.raises(StorageFailure):
            asyncio.run(handler.save_batch([make_upload("a.pdf", b"new")]))
        assert (upload_dir / "fixed-name.pdf").read_bytes() == b"existing"

    def test_long_names_are_shortened(self, handler):
        ref = asyncio.run(handler.save_batch([make_upload("n" * 400 + ".pdf", b"x")]))[0]
        stored = ref.path.rsplit("/", 1)[-1]
        assert stored.endswith(".pdf")
        assert len(stored) < 255

    def test_non_ascii_name_keeps_extension(self, handler, upload_dir):
        ref = asyncio.run(handler.save_batch([make_upload("документ.pdf", b"%PDF")]))[0]
        stored = ref.path.rsplit("/", 1)[-1]
        assert ref.name == "документ.pdf"
        assert stored.endswith("-document.pdf")
        assert (upload_dir / stored).read_bytes() == b"%PDF"

    def test_bare_extension_name(self, handler):
        ref = asyncio.run(handler.save_batch([make_upload(".pdf", b"%PDF")]))[0]
        assert ref.path.endswith("-document.pdf")

    def test_content_type_parameters_are_ignored(self, handler):
        ref = asyncio.run(handler.save_batch([make_upload("a.pdf", b"%PDF", "Application/PDF; name=a.pdf")]))[0]
        assert ref.type == PDF


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        "original,expected",
        [
            ("report.pdf", "report.pdf"),
            ("My Thesis (final).pdf", "My-Thesis-final.pdf"),
            ("документ.pdf", "document.pdf"),
            ("отчёт 2024.docx", "2024.docx"),
            (".pdf", "document.pdf"),
            ("../../etc/passwd", "passwd"),
            ("C:\\Users\\jane\\cv.doc", "cv.doc"),
            ("archive.tar.gz", "archive.tar.gz"),
            ("", "document"),
        ],
    )
    def test_sanitize(self, original, expected):
        assert sanitize_filename(original) == expected


def test_describe_size():
    assert describe_size(10 * 1024 * 1024) == "10MB"
    assert describe_size(64) == "64 bytes"


class TestResolve:
    def test_resolves_stored_file(self, handler, upload_dir):
        (upload_dir / "1-2-a.pdf").write_bytes(b"x")
        assert handler.resolve("1-2-a.pdf") == (upload_dir / "1-2-a.pdf").resolve()

    @pytest.mark.parametrize("name", ["missing.pdf", ".gitkeep", "../outside.pdf", ""])
    def test_rejects_unknown_or_unsafe(self, handler, upload_dir, name):
        (upload_dir.parent / "outside.pdf").write_bytes(b"secret")
        with pytest.raises(StoredFileNotFoundError):
            handler.resolve(name)


class TestClearAllFiles:
    def test_deletes_everything_but_sentinel(self, handler, upload_dir):
        asyncio.run(handler.save_batch([make_upload("a.pdf", b"a"), make_upload("b.pdf", b"b")]))
        result = handler.clear_all_files()
        assert result.ok
        assert result.deleted == 2
        assert listing(upload_dir) == [".gitkeep"]

    def test_recreates_missing_sentinel(self, handler, upload_dir):
        (upload_dir / ".gitkeep").unlink()
        handler.clear_all_files()
        assert listing(upload_dir) == [".gitkeep"]

    def test_continues_after_failure(self, handler, upload_dir):
        (upload_dir / "a.pdf").write_bytes(b"a")
        (upload_dir / "b-dir").mkdir()
        (upload_dir / "c.pdf").write_bytes(b"c")

        result = handler.clear_all_files()
        assert result.deleted == 2
        assert [failure.name for failure in result.failures] == ["b-dir"]
        assert not result.ok
        assert listing(upload_dir) == [".gitkeep", "b-dir"]

    def test_unlistable_directory(self, handler, upload_dir):
        (upload_dir / ".gitkeep").unlink()
        upload_dir.rmdir()
        with pytest.raises(StorageFailure):
            handler.clear_all_files()
