"""Unit tests for topomap.pipeline.artifacts."""

from __future__ import annotations

import os
from pathlib import Path

from topomap.pipeline.artifacts import (
    artifact_ready,
    copy_file,
    fresh_staging_dir,
    human_size,
    list_outputs,
    newest_match,
    publish_all,
)


def test_artifact_ready(tmp_path: Path) -> None:
    full = tmp_path / "full.pbf"
    full.write_bytes(b"data")
    empty = tmp_path / "empty.pbf"
    empty.write_bytes(b"")

    assert artifact_ready(full)
    assert not artifact_ready(empty)
    assert not artifact_ready(tmp_path / "missing.pbf")
    assert not artifact_ready(tmp_path)


def test_fresh_staging_dir_discards_leftovers(tmp_path: Path) -> None:
    staging = fresh_staging_dir(tmp_path / ".staging-download")
    (staging / "half.pbf").write_bytes(b"partial")

    again = fresh_staging_dir(tmp_path / ".staging-download")

    assert again == staging
    assert list(again.iterdir()) == []


def test_publish_all_moves_target_last(tmp_path: Path, monkeypatch) -> None:
    staging = tmp_path / "staging"
    staging.mkdir()
    for name in ("gmapsupp.img", "63240001.img", "63240002.img"):
        (staging / name).write_bytes(name.encode())
    dest = tmp_path / "output"
    dest.mkdir()

    order: list[str] = []
    real_replace = os.replace

    def recording_replace(src, dst):
        order.append(Path(dst).name)
        real_replace(src, dst)

    monkeypatch.setattr(os, "replace", recording_replace)
    published = publish_all(staging.iterdir(), dest, dest / "gmapsupp.img")

    assert order[-1] == "gmapsupp.img"
    assert sorted(p.name for p in published) == ["63240001.img", "63240002.img", "gmapsupp.img"]
    assert list(staging.iterdir()) == []


def test_copy_file_creates_identical_copy(tmp_path: Path) -> None:
    source = tmp_path / "gmapsupp.img"
    source.write_bytes(b"image-bytes")

    copy = copy_file(source, tmp_path / "out" / "UK_Topo.img")

    assert copy.read_bytes() == b"image-bytes"
    assert source.exists()
    assert not any(p.name.endswith(".partial") for p in copy.parent.iterdir())


def test_newest_match(tmp_path: Path) -> None:
    older = tmp_path / "uk_a.osm.pbf"
    newer = tmp_path / "uk_b.osm.pbf"
    older.write_bytes(b"1")
    newer.write_bytes(b"2")
    os.utime(older, (1_000_000, 1_000_000))
    os.utime(newer, (2_000_000, 2_000_000))
    (tmp_path / "other.osm.pbf").write_bytes(b"3")

    assert newest_match(tmp_path, "uk_*.osm.pbf") == newer
    assert newest_match(tmp_path, "fr_*.osm.pbf") is None


def test_list_outputs(tmp_path: Path) -> None:
    (tmp_path / "b.img").write_bytes(b"12")
    (tmp_path / "a.img").write_bytes(b"1")
    (tmp_path / "subdir").mkdir()

    listing = list_outputs(tmp_path)

    assert [(f.name, f.size_bytes) for f in listing] == [("a.img", 1), ("b.img", 2)]
    assert list_outputs(tmp_path / "missing") == []


def test_human_size() -> None:
    assert human_size(512) == "512B"
    assert human_size(2048) == "2.0K"
    assert human_size(5 * 1024 * 1024) == "5.0M"
    assert human_size(3 * 1024 ** 3) == "3.0G"


def test_human_size_rounds_up_to_next_unit() -> None:
    assert human_size(1024 * 1024 - 1) == "1.0M"
    assert human_size(1024 ** 3 - 1) == "1.0G"
    assert human_size(1023 * 1024) == "1023.0K"
