import zipfile

import pytest

from timesheet_backend.archive import ArchiveProcessor, build_result_zip, extract_zip_file, is_zip_file
from timesheet_backend.errors import BatchFailure, TraversalError, ValidationError

UPLOADED = "abc123456789_batch.zip"


@pytest.fixture
def dirs(tmp_path):
    work = tmp_path / "work"
    out = tmp_path / "uploads"
    work.mkdir()
    out.mkdir()
    return work, out


@pytest.fixture
def write_upload(dirs, make_zip):
    _, out = dirs

    def _write(entries):
        path = out / UPLOADED
        path.write_bytes(make_zip(entries))
        return path

    return _write


def test_partial_batch_converts_good_entries(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload(
        {
            "jan.xlsx": b"sheet-jan",
            "team/feb.xlsx": b"sheet-feb",
            "team/mar.xlsm": b"sheet-mar",
            "broken.xlsx": b"corrupt bytes",
            "readme.txt": b"ignored",
        }
    )
    processor = ArchiveProcessor(fake_converter, work_dir=work)

    result = processor.process_zip_file(upload, UPLOADED, None, out)

    assert result.success_count == 3
    assert result.failure_count == 1
    assert result.partial
    assert result.result_name == f"{UPLOADED}-result.zip"
    assert result.failed_files[0].startswith("broken.xlsx (Error:")
    assert sorted(result.processed_files) == ["jan.xlsx", "team/feb.xlsx", "team/mar.xlsm"]
    with zipfile.ZipFile(result.result_path) as zf:
        assert sorted(zf.namelist()) == ["feb_timesheet.docx", "jan_timesheet.docx", "mar_timesheet.docx"]
    assert sorted(p.name for p in out.iterdir()) == [UPLOADED, result.result_name]
    assert list(work.iterdir()) == []


def test_duplicate_basenames_in_different_folders(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload({"a/hours.xlsx": b"one", "b/hours.xlsx": b"two"})

    result = ArchiveProcessor(fake_converter, work_dir=work).process_zip_file(upload, UPLOADED, None, out)

    with zipfile.ZipFile(result.result_path) as zf:
        names = sorted(zf.namelist())
        assert names == ["hours_timesheet-1.docx", "hours_timesheet.docx"]
        assert {zf.read(n) for n in names} == {b"converted:hours.xlsx"}
    assert result.success_count == 2


@pytest.mark.parametrize(
    "evil",
    ["../../etc/passwd", "/tmp/evil.xlsx", "..\\..\\evil.xlsx", "..%2f..%2fevil.xlsx", "team/../../evil.xlsx"],
)
def test_zip_slip_fails_whole_archive(dirs, write_upload, fake_converter, evil):
    work, out = dirs
    upload = write_upload({"good.xlsx": b"fine", evil: b"payload"})

    with pytest.raises(TraversalError):
        ArchiveProcessor(fake_converter, work_dir=work).process_zip_file(upload, UPLOADED, None, out)

    assert fake_converter.calls == []
    assert list(work.iterdir()) == []
    assert [p.name for p in out.iterdir()] == [UPLOADED]
    assert not (out.parent / "evil.xlsx").exists()


def test_archive_without_spreadsheets(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload({"notes.txt": b"nothing to convert"})
    with pytest.raises(BatchFailure) as exc_info:
        ArchiveProcessor(fake_converter, work_dir=work).process_zip_file(upload, UPLOADED, None, out)
    assert "No Excel files" in str(exc_info.value)
    assert list(work.iterdir()) == []


def test_all_entries_failing_is_batch_failure(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload({"a.xlsx": b"corrupt a", "b.xlsx": b"corrupt b"})
    with pytest.raises(BatchFailure) as exc_info:
        ArchiveProcessor(fake_converter, work_dir=work).process_zip_file(upload, UPLOADED, None, out)
    assert len(exc_info.value.failed_files) == 2
    assert exc_info.value.status_code == 422
    assert [p.name for p in out.iterdir()] == [UPLOADED]
    assert list(work.iterdir()) == []


def test_too_many_entries(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload({f"{i}.xlsx": b"x" for i in range(3)})
    with pytest.raises(ValidationError) as exc_info:
        ArchiveProcessor(fake_converter, work_dir=work, max_entries=2).process_zip_file(upload, UPLOADED, None, out)
    assert exc_info.value.reason == "archive_too_many_entries"


def test_highly_compressed_entry_rejected(dirs, write_upload, fake_converter):
    work, out = dirs
    upload = write_upload({"bomb.xlsx": b"\x00" * 500_000})
    with pytest.raises(ValidationError) as exc_info:
        ArchiveProcessor(fake_converter, work_dir=work).process_zip_file(upload, UPLOADED, None, out)
    assert exc_info.value.reason == "archive_bomb"
    assert fake_converter.calls == []


def test_not_a_zip(tmp_path):
    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"definitely not a zip archive")
    assert not is_zip_file(bogus)
    with pytest.raises(ValidationError) as exc_info:
        extract_zip_file(bogus, tmp_path / "dest")
    assert exc_info.value.reason == "corrupt_archive"


def test_extract_keeps_nested_layout(tmp_path, make_zip):
    archive = tmp_path / "in.zip"
    archive.write_bytes(make_zip({"x/y/z.xlsx": b"deep", "top.xlsx": b"top"}))
    dest = tmp_path / "dest"
    dest.mkdir()
    extracted = extract_zip_file(archive, dest)
    assert sorted(p.relative_to(dest.resolve()).as_posix() for p in extracted) == ["top.xlsx", "x/y/z.xlsx"]


def test_build_result_zip_deduplicates(tmp_path):
    a = tmp_path / "a"
    b = tmp_path / "b"
    a.mkdir()
    b.mkdir()
    (a / "out.pdf").write_bytes(b"1")
    (b / "out.pdf").write_bytes(b"2")
    target = tmp_path / "result.zip"
    build_result_zip([a / "out.pdf", b / "out.pdf"], target)
    with zipfile.ZipFile(target) as zf:
        assert zf.read("out.pdf") == b"1"
        assert zf.read("out-1.pdf") == b"2"
