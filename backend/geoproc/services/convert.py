"""Conversion handlers for the convert and reproject operations.

Both handlers copy every vector layer of the source into a new dataset
written by a GDAL output driver in a private scratch directory, read the
result back, delete the directory and return the payload inline:

- GeoJSON: one file per layer (the driver holds a single layer per file),
  merged into one parsed FeatureCollection.
- KML: one document holding every layer; returned as text.
- Shapefile: one .shp set per layer in a directory; returned as a
  base64-encoded ZIP of that directory.

convert copies features verbatim. reproject always writes GeoJSON and
transforms each geometry into a caller-supplied reference system first;
a feature whose geometry cannot be transformed keeps its original
geometry and is counted in ``transform_failures``. A feature that cannot
be written at all is counted in ``skipped_features``.

Example:
    >>> from geoproc.services import convert
    >>> result = convert.convert_file("/data/roads.gpkg", "geojson", settings)
    >>> result["format"], result["data"]["type"]
    ('GeoJSON', 'FeatureCollection')
"""

from __future__ import annotations

import base64
import dataclasses
import io
import json
import pathlib
import tempfile
import zipfile
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

from geoproc.core import errors
from geoproc.services import cleanup
from geoproc.utils import gdal_helpers

if TYPE_CHECKING:
    from collections.abc import Iterable

    from geoproc.core import config

Encoding = Literal["json", "text", "base64-zip"]


@dataclasses.dataclass(frozen=True)
class OutputFormat:
    """How one output format is written and returned.

    Attributes:
        name: Canonical name reported back to the client.
        driver: GDAL driver short name.
        extension: Suffix of each written file ("" for a directory).
        one_file_per_layer: Whether each layer needs its own dataset.
        encoding: How the written output is returned inline.
    """

    name: str
    driver: str
    extension: str
    one_file_per_layer: bool
    encoding: Encoding


GEOJSON = OutputFormat("GeoJSON", "GeoJSON", ".geojson", True, "json")
KML = OutputFormat("KML", "KML", ".kml", False, "text")
SHAPEFILE = OutputFormat(
    "Shapefile", "ESRI Shapefile", "", False, "base64-zip"
)

OUTPUT_FORMATS: dict[str, OutputFormat] = {
    output_format.name.upper(): output_format
    for output_format in (GEOJSON, SHAPEFILE, KML)
}


def lookup_format(name: str) -> OutputFormat:
    """Find an output format by case-insensitive name.

    Raises:
        UnsupportedFormatError: If the format is not supported.
    """
    output_format = OUTPUT_FORMATS.get(name.strip().upper())
    if output_format is None:
        raise errors.UnsupportedFormatError(name)
    return output_format


@dataclasses.dataclass
class _CopyStats:
    feature_count: int = 0
    skipped_features: int = 0
    transform_failures: int = 0
    untransformed_layers: list[str] = dataclasses.field(default_factory=list)


def _copy_layers(
    output: Any,
    layers: Iterable[Any],
    stats: _CopyStats,
    target_srs: Any = None,
) -> None:
    """Copy layer schemas and features into ``output``.

    With ``target_srs`` every geometry is transformed before it is written.
    """
    for layer in layers:
        name = gdal_helpers.layer_name(layer)
        transform = None
        if target_srs is not None:
            source_srs = gdal_helpers.layer_spatial_reference(layer)
            if source_srs is None:
                logger.warning(f"Layer '{name}' has no spatial reference")
                stats.untransformed_layers.append(name)
            else:
                transform = gdal_helpers.build_transform(
                    source_srs, target_srs
                )

        output_layer = gdal_helpers.copy_layer_schema(
            layer, output, srs=target_srs
        )
        for feature in gdal_helpers.iterate_features(layer):
            geometry = None
            source_geometry = gdal_helpers.feature_geometry(feature)
            if transform is not None and source_geometry is not None:
                try:
                    geometry = gdal_helpers.transform_geometry(
                        source_geometry, transform
                    )
                except errors.ToolkitError as exc:
                    stats.transform_failures += 1
                    logger.warning(
                        f"Feature {gdal_helpers.feature_id(feature)} of "
                        f"'{name}' kept untransformed: {exc.message}"
                    )
            try:
                gdal_helpers.copy_feature(output_layer, feature, geometry)
            except errors.ToolkitError as exc:
                stats.skipped_features += 1
                logger.warning(
                    f"Feature {gdal_helpers.feature_id(feature)} of "
                    f"'{name}' skipped: {exc.message}"
                )
                continue
            stats.feature_count += 1


def _write_dataset(
    output_format: OutputFormat,
    target: pathlib.Path,
    layers: list[Any],
    stats: _CopyStats,
    target_srs: Any = None,
) -> None:
    output = gdal_helpers.create_vector_dataset(output_format.driver, target)
    try:
        _copy_layers(output, layers, stats, target_srs)
        gdal_helpers.flush(output)
    finally:
        gdal_helpers.close_dataset(output)


def _write_output(
    dataset: Any,
    output_format: OutputFormat,
    output_dir: pathlib.Path,
    target_srs: Any = None,
) -> tuple[int, _CopyStats]:
    layers = gdal_helpers.list_layers(dataset)
    if not layers:
        raise errors.ToolkitError("Dataset has no vector layers to convert")

    stats = _CopyStats()
    if output_format.one_file_per_layer:
        for index, layer in enumerate(layers):
            target = output_dir / f"{index:04d}{output_format.extension}"
            _write_dataset(output_format, target, [layer], stats, target_srs)
    else:
        target = output_dir / f"output{output_format.extension}"
        _write_dataset(output_format, target, layers, stats, target_srs)
    return len(layers), stats


def _merge_feature_collections(paths: list[pathlib.Path]) -> dict[str, Any]:
    """Parse GeoJSON outputs; several files are merged into one collection.

    A ``crs`` member shared by every file is kept on the merged collection.
    """
    collections = [json.loads(path.read_text("utf-8")) for path in paths]
    if len(collections) == 1:
        collection: dict[str, Any] = collections[0]
        return collection
    features: list[Any] = []
    for collection in collections:
        features.extend(collection.get("features", []))
    merged: dict[str, Any] = {"type": "FeatureCollection"}
    declared = [collection.get("crs") for collection in collections]
    if declared[0] is not None and all(crs == declared[0] for crs in declared):
        merged["crs"] = declared[0]
    merged["features"] = features
    return merged


def _zip_directory(directory: pathlib.Path) -> str:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zip_file:
        for path in sorted(directory.rglob("*")):
            if path.is_file():
                zip_file.write(path, path.relative_to(directory))
    return base64.b64encode(buffer.getvalue()).decode("ascii")


def _read_output(output_format: OutputFormat, output_dir: pathlib.Path) -> Any:
    if output_format.encoding == "json":
        return _merge_feature_collections(
            sorted(output_dir.glob(f"*{output_format.extension}"))
        )
    target = output_dir / f"output{output_format.extension}"
    if output_format.encoding == "text":
        return target.read_text("utf-8")
    return _zip_directory(target)


def _run_conversion(
    path: str,
    output_format: OutputFormat,
    settings: config.Settings,
    target_srs: Any = None,
) -> tuple[Any, int, _CopyStats]:
    output_dir = pathlib.Path(
        tempfile.mkdtemp(prefix="convert.", dir=settings.storage_dir)
    )
    try:
        with gdal_helpers.open_dataset(path) as dataset:
            layer_count, stats = _write_output(
                dataset, output_format, output_dir, target_srs
            )
        data = _read_output(output_format, output_dir)
    except (OSError, ValueError) as exc:
        raise errors.ToolkitError(
            f"Cannot read converted output: {exc}"
        ) from exc
    finally:
        cleanup.remove_path(output_dir)
    return data, layer_count, stats


def convert_file(
    path: str,
    output_format: str,
    settings: config.Settings,
) -> dict[str, Any]:
    """Re-encode every layer of a dataset in another vector format.

    Args:
        path: Resolved path of the dataset.
        output_format: "GeoJSON", "Shapefile" or "KML" (any case).
        settings: Supplies the scratch directory.

    Returns:
        Dictionary with format, encoding, data, layer_count, feature_count
        and skipped_features.

    Raises:
        UnsupportedFormatError: For any other format name.
        ToolkitError: If the dataset cannot be read or written.
    """
    selected = lookup_format(output_format)
    data, layer_count, stats = _run_conversion(path, selected, settings)
    logger.info(
        f"Converted {layer_count} layers ({stats.feature_count} features) "
        f"to {selected.name}"
    )
    return {
        "format": selected.name,
        "encoding": selected.encoding,
        "data": data,
        "layer_count": layer_count,
        "feature_count": stats.feature_count,
        "skipped_features": stats.skipped_features,
    }


def reproject_file(
    path: str,
    target_srs: str,
    settings: config.Settings,
) -> dict[str, Any]:
    """Reproject every layer into ``target_srs`` and return GeoJSON.

    Args:
        path: Resolved path of the dataset.
        target_srs: Any definition GDAL accepts, e.g. "EPSG:3857".
        settings: Supplies the scratch directory.

    Raises:
        ToolkitError: If the SRS is invalid, a transformation cannot be
            built, or the dataset cannot be read or written.
    """
    srs = gdal_helpers.spatial_reference_from_user_input(target_srs)
    data, layer_count, stats = _run_conversion(path, GEOJSON, settings, srs)
    logger.info(
        f"Reprojected {layer_count} layers ({stats.feature_count} features) "
        f"to {target_srs}"
    )
    return {
        "format": GEOJSON.name,
        "encoding": GEOJSON.encoding,
        "target_srs": target_srs,
        "data": data,
        "layer_count": layer_count,
        "feature_count": stats.feature_count,
        "skipped_features": stats.skipped_features,
        "transform_failures": stats.transform_failures,
        "untransformed_layers": stats.untransformed_layers,
    }
