"""Tests for upload path resolution in geoproc.services.resolver.

Covers:
    - Pass-through of plain uploads,
    - Candidate construction and probe order for ZIP archives,
    - The extraction fallback and its priority rules,
    - Failure modes: empty archives, corrupt archives, escaping members
      and archives that expand past the extraction limit.
"""

from __future__ import annotations

import pathlib
from collections.abc import Callable

import pytest

from geoproc.core import errors, models
from geoproc.services import resolver
from geoproc.utils import gdal_helpers

MakeZip = Callable[[str, dict[str, bytes]], pathlib.Path]


def _upload(path: pathlib.Path, original_name: str) -> models.UploadedFile:
    return models.UploadedFile(
        path=path,
        original_name=original_name,
        size=path.stat().st_size if path.exists() else 0,
    )


def test_plain_upload_passes_through(points_3857: pathlib.Path) -> None:
    source = resolver.resolve(_upload(points_3857, "points.geojson"))
    assert source.path == str(points_3857)
    assert source.strategy == "direct"
    assert source.artifacts == []


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("roads.zip", True),
        ("ROADS.ZIP", True),
        ("roads.gdb.zip", True),
        ("roads.gpkg", False),
        ("zip", False),
    ],
)
def test_is_archive(filename: str, expected: bool) -> None:
    assert resolver.is_archive(filename) is expected


def test_archive_candidates() -> None:
    scratch = pathlib.Path("/scratch/1-roads.gdb.zip")
    name = "Roads.Gdb.zip"
    candidates = [
        build(scratch, name) for _, build in resolver.ARCHIVE_PROBES
    ]
    assert candidates == [
        "/vsizip//scratch/1-roads.gdb.zip",
        "/vsizip//scratch/1-roads.gdb.zip/Roads.Gdb",
        "/vsizip//scratch/1-roads.gdb.zip/Roads.GDB",
        "/vsizip//scratch/1-roads.gdb.zip/Roads.gdb",
    ]


def test_suffixless_archive_skips_case_variants() -> None:
    scratch = pathlib.Path("/scratch/1-data.zip")
    assert resolver.probe_entry_verbatim(scratch, "data.zip") == (
        "/vsizip//scratch/1-data.zip/data"
    )
    assert resolver.probe_entry_upper_suffix(scratch, "data.zip") is None
    assert resolver.probe_entry_lower_suffix(scratch, "data.zip") is None


def test_probes_stop_at_first_success(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: pathlib.Path,
) -> None:
    scratch = tmp_path / "1-roads.gdb.zip"
    scratch.write_bytes(b"")
    attempts: list[str] = []

    def fake_probe(path: str) -> bool:
        attempts.append(path)
        return path.endswith("roads.GDB")

    monkeypatch.setattr(gdal_helpers, "probe", fake_probe)
    source = resolver.resolve(_upload(scratch, "roads.gdb.zip"))

    assert source.strategy == "vsizip-entry-upper"
    assert source.path == f"/vsizip/{scratch}/roads.GDB"
    assert attempts == [
        f"/vsizip/{scratch}",
        f"/vsizip/{scratch}/roads.gdb",
        f"/vsizip/{scratch}/roads.GDB",
    ]


def test_duplicate_candidates_probed_once(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: pathlib.Path,
) -> None:
    """The lower-suffix candidate equals the verbatim one for "x.gdb"."""
    scratch = tmp_path / "1-roads.gdb.zip"
    scratch.write_bytes(b"")
    attempts: list[str] = []
    fallback = models.ResolvedSource(path="found", strategy="extracted")

    def fake_probe(path: str) -> bool:
        attempts.append(path)
        return False

    monkeypatch.setattr(gdal_helpers, "probe", fake_probe)
    monkeypatch.setattr(
        resolver, "_extract_and_locate", lambda upload, max_bytes: fallback
    )

    assert resolver.resolve(_upload(scratch, "roads.gdb.zip")) is fallback
    assert len(attempts) == 3
    assert len(set(attempts)) == 3


def test_zipped_geojson_opens_through_vsizip(
    make_zip: MakeZip,
    points_3857: pathlib.Path,
) -> None:
    archive = make_zip(
        "points.geojson.zip",
        {"points.geojson": points_3857.read_bytes()},
    )
    source = resolver.resolve(_upload(archive, "points.geojson.zip"))
    assert source.path.startswith(f"/vsizip/{archive}")
    assert source.artifacts == []
    assert gdal_helpers.probe(source.path)


def test_extraction_fallback(
    monkeypatch: pytest.MonkeyPatch,
    make_zip: MakeZip,
    points_3857: pathlib.Path,
) -> None:
    """When no virtual path opens, the archive is extracted and scanned."""
    archive = make_zip(
        "bundle.zip",
        {
            "docs/readme.txt": b"hello",
            "data/points.geojson": points_3857.read_bytes(),
        },
    )
    monkeypatch.setattr(gdal_helpers, "probe", lambda path: False)

    source = resolver.resolve(_upload(archive, "bundle.zip"))

    assert source.strategy == "extracted"
    assert pathlib.Path(source.path).name == "points.geojson"
    assert len(source.artifacts) == 1
    extracted = source.artifacts[0]
    assert extracted.is_dir()
    assert extracted.parent == archive.parent
    assert pathlib.Path(source.path).is_relative_to(extracted)


def test_find_dataset_priority(tmp_path: pathlib.Path) -> None:
    """A geodatabase outranks shapefiles, which outrank single files."""
    (tmp_path / "a.geojson").write_text("{}")
    (tmp_path / "b.shp").write_bytes(b"")
    assert resolver.find_dataset(tmp_path) == tmp_path / "b.shp"

    (tmp_path / "z" / "Parcels.GDB").mkdir(parents=True)
    assert resolver.find_dataset(tmp_path) == tmp_path / "z" / "Parcels.GDB"


def test_find_dataset_single_file_order(tmp_path: pathlib.Path) -> None:
    (tmp_path / "a.csv").write_text("x,y\n")
    (tmp_path / "b.gpkg").write_bytes(b"")
    assert resolver.find_dataset(tmp_path) == tmp_path / "b.gpkg"


def test_find_dataset_ignores_macos_metadata(tmp_path: pathlib.Path) -> None:
    (tmp_path / "__MACOSX").mkdir()
    (tmp_path / "__MACOSX" / "._roads.shp").write_bytes(b"")
    assert resolver.find_dataset(tmp_path) is None

    (tmp_path / "roads.shp").write_bytes(b"")
    assert resolver.find_dataset(tmp_path) == tmp_path / "roads.shp"


def test_archive_without_dataset(
    monkeypatch: pytest.MonkeyPatch,
    make_zip: MakeZip,
) -> None:
    archive = make_zip("notes.zip", {"notes.txt": b"nothing here"})
    monkeypatch.setattr(gdal_helpers, "probe", lambda path: False)

    with pytest.raises(errors.UnsupportedDatasetError, match="notes.zip"):
        resolver.resolve(_upload(archive, "notes.zip"))

    # The extraction directory does not outlive the failure.
    assert [path.name for path in archive.parent.iterdir()] == [archive.name]


def test_corrupt_archive(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: pathlib.Path,
) -> None:
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"this is not a zip file")
    monkeypatch.setattr(gdal_helpers, "probe", lambda path: False)

    with pytest.raises(errors.UnsupportedDatasetError):
        resolver.resolve(_upload(archive, "broken.zip"))
    assert list(tmp_path.iterdir()) == [archive]


def test_extraction_skips_escaping_members(
    make_zip: MakeZip,
    tmp_path: pathlib.Path,
) -> None:
    archive = make_zip(
        "evil.zip",
        {"../escaped.geojson": b"{}", "inside.geojson": b"{}"},
    )
    target = tmp_path / "target"
    target.mkdir()

    resolver._extract_archive(archive, target)

    assert (target / "inside.geojson").exists()
    assert not (tmp_path / "escaped.geojson").exists()


def test_geodatabase_with_different_casing_resolves_by_extraction(
    parcels_gdb_zip: pathlib.Path,
) -> None:
    """parcels.zip holding Parcels.GDB/ opens through the extracted copy."""
    source = resolver.resolve(_upload(parcels_gdb_zip, "parcels.zip"))

    assert source.strategy == "extracted"
    assert pathlib.Path(source.path).name == "Parcels.GDB"
    with gdal_helpers.open_dataset(source.path) as dataset:
        names = [
            gdal_helpers.layer_name(layer)
            for layer in gdal_helpers.list_layers(dataset)
        ]
    assert names == ["parcels"]


def test_extraction_limit(
    monkeypatch: pytest.MonkeyPatch,
    make_zip: MakeZip,
    points_3857: pathlib.Path,
) -> None:
    """An archive that expands past the limit is rejected unextracted."""
    payload = points_3857.read_bytes()
    archive = make_zip("big.zip", {"points.geojson": payload})
    monkeypatch.setattr(gdal_helpers, "probe", lambda path: False)

    with pytest.raises(errors.UnsupportedDatasetError, match="limit"):
        resolver.resolve(
            _upload(archive, "big.zip"), max_extract_bytes=len(payload) - 1
        )
    assert not list(archive.parent.glob("*.extracted"))

    source = resolver.resolve(
        _upload(archive, "big.zip"), max_extract_bytes=len(payload)
    )
    assert source.strategy == "extracted"
