from pathlib import Path

from photo_crawler.models import ResolvedRecord
from photo_crawler.resume import clean_output, compute_completed, parse_item_id, parse_output_row


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_absent_or_empty_output_is_empty_set(tmp_path: Path):
    assert compute_completed(tmp_path / "missing.csv") == set()
    assert compute_completed(None) == set()
    assert compute_completed(_write(tmp_path / "empty.csv", "")) == set()
    assert compute_completed(_write(tmp_path / "header.csv", "owner,item,resource_url\n")) == set()


def test_only_rows_with_owner_item_and_url_count(tmp_path: Path):
    out = _write(tmp_path / "out.csv", "\n".join([
        "owner,item,resource_url",
        "A,101,https://img/101.jpg",
        "A,102,",
        ",103,https://img/103.jpg",
        "A,,https://img/x.jpg",
        "A,abc,https://img/abc.jpg",
        "B,104.0,https://img/104.jpg",
        "B,105,null",
        "B,106",
        " C , 107 , https://img/107.jpg ",
    ]) + "\n")
    assert compute_completed(out) == {101, 104, 107}


def test_legacy_column_names_are_understood(tmp_path: Path):
    out = _write(tmp_path / "legacy.csv", "user,id,photo_url\nA,101,https://img/101.jpg\nA,102,\n")
    assert compute_completed(out) == {101}


def test_parse_helpers():
    assert parse_item_id("101") == 101
    assert parse_item_id(" 101.0 ") == 101
    assert parse_item_id("101.5") is None
    assert parse_item_id("nan") is None
    assert parse_item_id("") is None

    assert parse_output_row({"owner": "A", "item": "7", "resource_url": ""}) == ResolvedRecord("A", 7, None)
    assert parse_output_row({"owner": "", "item": "7", "resource_url": "u"}) is None
    assert parse_output_row({"owner": "A", "item": None, "resource_url": "u"}) is None


def test_clean_output_dedupes_and_prefers_resolved(tmp_path: Path):
    src = _write(tmp_path / "out.csv", "\n".join([
        "owner,item,resource_url",
        "A,101,",
        "A,102,https://img/102.jpg",
        "broken-row",
        "A,101,https://img/101.jpg",
        "A,102,",
        "A,103,null",
    ]) + "\n")
    dst = tmp_path / "cleaned.csv"

    stats = clean_output(src, dst)

    assert dst.read_text().splitlines() == [
        "owner,item,resource_url",
        "A,101,https://img/101.jpg",
        "A,102,https://img/102.jpg",
        "A,103,",
    ]
    assert stats.rows_in == 6
    assert stats.malformed == 1
    assert stats.duplicates == 2
    assert stats.rows_out == 3
    assert stats.resolved_out == 2
    # source left untouched
    assert "broken-row" in src.read_text()


def test_clean_output_in_place_and_missing_source(tmp_path: Path):
    src = _write(tmp_path / "out.csv", "owner,item,resource_url\nA,1,u\nA,1,u\n")
    clean_output(src, src)
    assert src.read_text() == "owner,item,resource_url\nA,1,u\n"

    dst = tmp_path / "nothing.csv"
    stats = clean_output(tmp_path / "absent.csv", dst)
    assert stats.rows_out == 0
    assert dst.read_text() == "owner,item,resource_url\n"


def test_undecodable_rows_are_malformed(tmp_path: Path):
    out = tmp_path / "out.csv"
    out.write_bytes(
        b"owner,item,resource_url\n"
        b"A,101,https://img/101.jpg\n"
        b"\xe9t\xe9,102,https://img/102.jpg\n"
        b"A,103,https://img/103.jpg\n"
    )
    assert compute_completed(out) == {101, 103}

    dst = tmp_path / "cleaned.csv"
    stats = clean_output(out, dst)
    assert stats.malformed == 1
    assert dst.read_text().splitlines() == [
        "owner,item,resource_url",
        "A,101,https://img/101.jpg",
        "A,103,https://img/103.jpg",
    ]
