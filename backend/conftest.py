"""Pytest configuration and shared dataset fixtures.

Exposes the backend package for imports and builds small real datasets
with GDAL in each test's temporary directory:

- points_3857: GeoJSON layer "points" with three points in Web Mercator
- two_layer_gpkg: GeoPackage with layers "parcels" (3) and "roads" (2)
- raster_tif: 4x3 single-band GeoTIFF in EPSG:4326
- parcels_gdb_zip: parcels.zip holding the geodatabase Parcels.GDB
"""

from __future__ import annotations

import json
import pathlib
import sys
import zipfile
from collections.abc import Callable

import pytest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from osgeo import gdal, ogr, osr  # noqa: E402

from geoproc.core import config  # noqa: E402

# Roughly Zagreb, Dubrovnik and Split in EPSG:3857 metres.
MERCATOR_POINTS = [
    ("Zagreb", 767_000, (1_773_000.0, 5_749_000.0)),
    ("Dubrovnik", 41_000, (2_016_000.0, 5_268_000.0)),
    ("Split", 160_000, (1_832_000.0, 5_381_000.0)),
]


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> config.Settings:
    """Settings whose scratch directory lives inside tmp_path."""
    test_settings = config.Settings(storage_dir=tmp_path / "uploads")
    test_settings.ensure_directories()
    return test_settings


@pytest.fixture
def points_3857(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "points.geojson"
    collection = {
        "type": "FeatureCollection",
        "name": "points",
        "crs": {
            "type": "name",
            "properties": {"name": "urn:ogc:def:crs:EPSG::3857"},
        },
        "features": [
            {
                "type": "Feature",
                "properties": {"name": name, "population": population},
                "geometry": {"type": "Point", "coordinates": list(xy)},
            }
            for name, population, xy in MERCATOR_POINTS
        ],
    }
    path.write_text(json.dumps(collection), encoding="utf-8")
    return path


def _wgs84() -> osr.SpatialReference:
    srs = osr.SpatialReference()
    srs.ImportFromEPSG(4326)
    srs.SetAxisMappingStrategy(osr.OAMS_TRADITIONAL_GIS_ORDER)
    return srs


@pytest.fixture
def two_layer_gpkg(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "city.gpkg"
    dataset = gdal.GetDriverByName("GPKG").Create(
        str(path), 0, 0, 0, gdal.GDT_Unknown
    )
    srs = _wgs84()

    parcels = dataset.CreateLayer("parcels", srs=srs, geom_type=ogr.wkbPolygon)
    parcels.CreateField(ogr.FieldDefn("parcel_id", ogr.OFTInteger))
    parcels.CreateField(ogr.FieldDefn("owner", ogr.OFTString))
    for index in range(3):
        x = 15.9 + index * 0.01
        feature = ogr.Feature(parcels.GetLayerDefn())
        feature.SetField("parcel_id", index + 1)
        feature.SetField("owner", f"owner {index}")
        feature.SetGeometry(
            ogr.CreateGeometryFromWkt(
                f"POLYGON (({x} 45.8, {x + 0.005} 45.8, "
                f"{x + 0.005} 45.805, {x} 45.805, {x} 45.8))"
            )
        )
        parcels.CreateFeature(feature)

    roads = dataset.CreateLayer("roads", srs=srs, geom_type=ogr.wkbLineString)
    roads.CreateField(ogr.FieldDefn("name", ogr.OFTString))
    for index, wkt in enumerate(
        (
            "LINESTRING (15.90 45.80, 15.95 45.81)",
            "LINESTRING (15.95 45.81, 16.00 45.82)",
        )
    ):
        feature = ogr.Feature(roads.GetLayerDefn())
        feature.SetField("name", f"road {index}")
        feature.SetGeometry(ogr.CreateGeometryFromWkt(wkt))
        roads.CreateFeature(feature)

    dataset.Close()
    return path


@pytest.fixture
def raster_tif(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "elevation.tif"
    dataset = gdal.GetDriverByName("GTiff").Create(
        str(path), 4, 3, 1, gdal.GDT_Byte
    )
    dataset.SetGeoTransform((15.0, 0.5, 0.0, 46.0, 0.0, -0.5))
    dataset.SetProjection(_wgs84().ExportToWkt())
    dataset.GetRasterBand(1).Fill(7)
    dataset.Close()
    return path


@pytest.fixture
def make_zip(
    tmp_path: pathlib.Path,
) -> Callable[[str, dict[str, bytes]], pathlib.Path]:
    """Build a ZIP archive in tmp_path from a name -> content mapping.

    Names ending in "/" become directory entries.
    """

    def _make(name: str, members: dict[str, bytes]) -> pathlib.Path:
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as archive:
            for member, content in members.items():
                if member.endswith("/"):
                    archive.writestr(zipfile.ZipInfo(member), b"")
                else:
                    archive.writestr(member, content)
        return path

    return _make


@pytest.fixture
def parcels_gdb_zip(
    tmp_path: pathlib.Path,
    make_zip: Callable[[str, dict[str, bytes]], pathlib.Path],
) -> pathlib.Path:
    """parcels.zip holding a File Geodatabase directory named Parcels.GDB.

    The geodatabase has one polygon layer "parcels" with two features.
    """
    driver = gdal.GetDriverByName("OpenFileGDB")
    if driver is None or driver.GetMetadataItem(gdal.DCAP_CREATE) != "YES":
        pytest.skip("OpenFileGDB driver cannot create geodatabases")

    build_dir = tmp_path / "build"
    build_dir.mkdir()
    gdb_path = build_dir / "Parcels.GDB"
    dataset = driver.Create(str(gdb_path), 0, 0, 0, gdal.GDT_Unknown)
    layer = dataset.CreateLayer(
        "parcels", srs=_wgs84(), geom_type=ogr.wkbPolygon
    )
    layer.CreateField(ogr.FieldDefn("parcel_id", ogr.OFTInteger))
    for index in range(2):
        x = 15.9 + index * 0.01
        feature = ogr.Feature(layer.GetLayerDefn())
        feature.SetField("parcel_id", index + 1)
        feature.SetGeometry(
            ogr.CreateGeometryFromWkt(
                f"POLYGON (({x} 45.8, {x + 0.005} 45.8, "
                f"{x + 0.005} 45.805, {x} 45.805, {x} 45.8))"
            )
        )
        layer.CreateFeature(feature)
    dataset.Close()

    members = {"Parcels.GDB/": b""}
    for path in sorted(gdb_path.iterdir()):
        if path.is_file():
            members[f"Parcels.GDB/{path.name}"] = path.read_bytes()
    return make_zip("parcels.zip", members)
