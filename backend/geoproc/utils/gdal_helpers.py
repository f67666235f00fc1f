"""Narrow adapter around the GDAL/OGR Python bindings.

Every call into ``osgeo`` made by the service goes through this module, so
changes in how the toolkit exposes datasets, layers and features are
isolated here. Handlers only ever see plain Python values, the dataclasses
in :mod:`geoproc.core.models`, or opaque handles they pass back into the
functions below.

GDAL exceptions are enabled at import time. Any failure raised by the
bindings while opening, transforming or writing data is re-raised as
:class:`~geoproc.core.errors.ToolkitError` carrying GDAL's message.

Example:
    Describe every layer in a dataset:
        >>> from geoproc.utils import gdal_helpers

        >>> with gdal_helpers.open_dataset("/data/roads.gpkg") as dataset:
        ...     for layer in gdal_helpers.list_layers(dataset):
        ...         print(layer.GetName(), layer.GetFeatureCount())

    Read a layer from inside an uploaded archive:
        >>> path = "/vsizip//tmp/up.zip/roads.shp"
        >>> with gdal_helpers.open_dataset(path) as ds:
        ...     layer = gdal_helpers.get_layer(ds, "roads")
"""

from __future__ import annotations

import contextlib
import json
from typing import TYPE_CHECKING, Any

from loguru import logger
from osgeo import gdal, ogr, osr

from geoproc.core import errors
from geoproc.core import models

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterator

gdal.UseExceptions()
ogr.UseExceptions()
osr.UseExceptions()

_JUSTIFICATION = {
    ogr.OJUndefined: None,
    ogr.OJLeft: "Left",
    ogr.OJRight: "Right",
}


def toolkit_version() -> str:
    """Return the GDAL release name, e.g. "3.8.4"."""
    return str(gdal.VersionInfo("RELEASE_NAME"))


def _open(path: str) -> gdal.Dataset:
    try:
        dataset = gdal.OpenEx(path, gdal.OF_VECTOR | gdal.OF_RASTER)
    except RuntimeError as exc:
        raise errors.ToolkitError(str(exc)) from exc
    if dataset is None:
        raise errors.ToolkitError(f"Unable to open dataset: {path}")
    return dataset


def close_dataset(dataset: gdal.Dataset | None) -> None:
    """Release the native handle held by an open dataset."""
    if dataset is None:
        return
    try:
        dataset.Close()
    except RuntimeError as exc:
        logger.warning(f"Error closing dataset: {exc}")


@contextlib.contextmanager
def open_dataset(path: str) -> Iterator[gdal.Dataset]:
    """Open a vector and/or raster dataset and close it on every exit path.

    Args:
        path: Plain filesystem path or GDAL virtual path (/vsizip/...).

    Yields:
        The open GDAL dataset.

    Raises:
        ToolkitError: If GDAL cannot open the path.
    """
    dataset = _open(path)
    try:
        yield dataset
    finally:
        close_dataset(dataset)


def probe(path: str) -> bool:
    """Report whether GDAL can open ``path``; the handle is closed at once."""
    try:
        with open_dataset(path):
            return True
    except errors.ToolkitError as exc:
        logger.debug(f"Probe failed for {path}: {exc}")
        return False


def driver_name(dataset: gdal.Dataset) -> str:
    driver = dataset.GetDriver()
    if driver is None:
        return models.UNKNOWN
    return driver.ShortName or models.UNKNOWN


def raster_size(dataset: gdal.Dataset) -> models.RasterSize:
    return models.RasterSize(
        width=dataset.RasterXSize or 0,
        height=dataset.RasterYSize or 0,
    )


def band_count(dataset: gdal.Dataset) -> int:
    return dataset.RasterCount or 0


def list_layers(dataset: gdal.Dataset) -> list[ogr.Layer]:
    """Return the dataset's vector layers in native index order."""
    return [
        dataset.GetLayerByIndex(index)
        for index in range(dataset.GetLayerCount())
    ]


def layer_name(layer: ogr.Layer, index: int = 0) -> str:
    return layer.GetName() or f"Layer_{index}"


def feature_count(layer: ogr.Layer) -> int:
    """Feature count, with GDAL's -1 (unknown) rendered as zero."""
    return max(layer.GetFeatureCount(), 0)


def layer_spatial_reference(layer: ogr.Layer) -> osr.SpatialReference | None:
    return layer.GetSpatialRef()


def get_layer(dataset: gdal.Dataset, name: str) -> ogr.Layer | None:
    """Find a layer by exact, case-sensitive name."""
    for layer in list_layers(dataset):
        if layer.GetName() == name:
            return layer
    return None


def geometry_type_name(layer: ogr.Layer) -> str:
    """Return the layer's geometry type as a named tag ("Point", ...)."""
    try:
        return str(ogr.GeometryTypeToName(layer.GetGeomType()))
    except RuntimeError:
        return models.UNKNOWN


def spatial_reference_wkt(srs: osr.SpatialReference | None) -> str:
    if srs is None:
        return models.UNKNOWN
    try:
        return str(srs.ExportToWkt()) or models.UNKNOWN
    except RuntimeError:
        return models.UNKNOWN


def dataset_spatial_reference(
    dataset: gdal.Dataset,
) -> osr.SpatialReference | None:
    """Dataset-level SRS, falling back to the first layer's SRS."""
    srs = dataset.GetSpatialRef()
    if srs is not None:
        return srs
    for layer in list_layers(dataset):
        layer_srs = layer.GetSpatialRef()
        if layer_srs is not None:
            return layer_srs
    return None


def layer_extent(layer: ogr.Layer) -> models.Extent | None:
    """Bounding extent of a layer, or None when GDAL cannot compute one."""
    try:
        min_x, max_x, min_y, max_y = layer.GetExtent()
    except RuntimeError:
        return None
    return models.Extent(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)


def raster_extent(dataset: gdal.Dataset) -> models.Extent | None:
    """Bounds implied by a raster's geotransform, or None."""
    if not dataset.RasterXSize or not dataset.RasterYSize:
        return None
    transform = dataset.GetGeoTransform(can_return_null=True)
    if transform is None:
        return None
    width, height = dataset.RasterXSize, dataset.RasterYSize
    xs = [
        transform[0] + transform[1] * col + transform[2] * row
        for col, row in ((0, 0), (width, 0), (0, height), (width, height))
    ]
    ys = [
        transform[3] + transform[4] * col + transform[5] * row
        for col, row in ((0, 0), (width, 0), (0, height), (width, height))
    ]
    return models.Extent(
        min_x=min(xs), min_y=min(ys), max_x=max(xs), max_y=max(ys)
    )


def get_layer_fields(layer: ogr.Layer) -> list[models.FieldDescriptor]:
    """Describe every attribute field of a layer."""
    definition = layer.GetLayerDefn()
    fields = []
    for index in range(definition.GetFieldCount()):
        field = definition.GetFieldDefn(index)
        fields.append(
            models.FieldDescriptor(
                name=field.GetName(),
                type=field.GetTypeName(),
                width=field.GetWidth(),
                precision=field.GetPrecision(),
                nullable=bool(field.IsNullable()),
                default=field.GetDefault(),
                justification=_JUSTIFICATION.get(field.GetJustify()),
            )
        )
    return fields


def iterate_features(layer: ogr.Layer) -> Iterator[ogr.Feature]:
    """Yield every feature of a layer from the start."""
    layer.ResetReading()
    while (feature := layer.GetNextFeature()) is not None:
        yield feature


def feature_id(feature: ogr.Feature) -> int | None:
    fid = feature.GetFID()
    return None if fid == ogr.NullFID else fid


def _json_value(value: Any) -> Any:
    if isinstance(value, bytes | bytearray):
        return value.hex()
    return value


def feature_properties(
    feature: ogr.Feature,
    limit: int | None = None,
) -> dict[str, Any]:
    """Map field names to values; unreadable values become None.

    Args:
        feature: Feature to read.
        limit: Optional maximum number of fields to include.
    """
    count = feature.GetFieldCount()
    if limit is not None:
        count = min(count, limit)
    properties: dict[str, Any] = {}
    for index in range(count):
        name = feature.GetFieldDefnRef(index).GetName()
        try:
            if not feature.IsFieldSetAndNotNull(index):
                properties[name] = None
                continue
            properties[name] = _json_value(feature.GetField(index))
        except (RuntimeError, TypeError, ValueError) as exc:
            logger.warning(
                f"Field '{name}' of feature {feature.GetFID()} "
                f"unreadable: {exc}"
            )
            properties[name] = None
    return properties


def feature_geometry(feature: ogr.Feature) -> ogr.Geometry | None:
    return feature.GetGeometryRef()


def geometry_type_of(geometry: ogr.Geometry | None) -> str | None:
    if geometry is None:
        return None
    return str(geometry.GetGeometryName())


def geometry_to_geojson(
    geometry: ogr.Geometry | None,
) -> dict[str, Any] | None:
    """Render an OGR geometry as a GeoJSON-shaped mapping."""
    if geometry is None:
        return None
    result: dict[str, Any] = json.loads(geometry.ExportToJson())
    return result


def spatial_reference_from_user_input(text: str) -> osr.SpatialReference:
    """Build an SRS from any definition GDAL accepts ("EPSG:4326", WKT...).

    Axis order is forced to longitude/latitude (traditional GIS order).

    Raises:
        ToolkitError: If GDAL cannot interpret the definition.
    """
    srs = osr.SpatialReference()
    try:
        srs.SetFromUserInput(text)
    except RuntimeError as exc:
        raise errors.ToolkitError(
            f"Invalid spatial reference '{text}': {exc}"
        ) from exc
    srs.SetAxisMappingStrategy(osr.OAMS_TRADITIONAL_GIS_ORDER)
    return srs


def build_transform(
    source: osr.SpatialReference,
    target: str | osr.SpatialReference,
) -> osr.CoordinateTransformation:
    """Create a coordinate transformation from ``source`` into ``target``.

    Both reference systems use traditional GIS axis order so GeoJSON output
    is always x=longitude, y=latitude. The layer's own SRS object is cloned
    rather than modified.

    Raises:
        ToolkitError: If the transformation cannot be constructed.
    """
    if isinstance(target, str):
        target = spatial_reference_from_user_input(target)
    source = source.Clone()
    source.SetAxisMappingStrategy(osr.OAMS_TRADITIONAL_GIS_ORDER)
    try:
        transform = osr.CoordinateTransformation(source, target)
    except RuntimeError as exc:
        raise errors.ToolkitError(
            f"Cannot build coordinate transformation: {exc}"
        ) from exc
    if transform is None:
        raise errors.ToolkitError("Cannot build coordinate transformation")
    return transform


def transform_geometry(
    geometry: ogr.Geometry,
    transform: osr.CoordinateTransformation,
) -> ogr.Geometry:
    """Return a transformed copy of ``geometry``; the original is untouched.

    Raises:
        ToolkitError: If any coordinate cannot be transformed.
    """
    transformed = geometry.Clone()
    try:
        transformed.Transform(transform)
    except RuntimeError as exc:
        raise errors.ToolkitError(str(exc)) from exc
    return transformed


def create_vector_dataset(
    driver_name: str, path: pathlib.Path
) -> gdal.Dataset:
    """Create an empty vector dataset with the named output driver.

    Raises:
        ToolkitError: If the driver is unavailable or creation fails.
    """
    driver = gdal.GetDriverByName(driver_name)
    if driver is None:
        raise errors.ToolkitError(f"Driver not available: {driver_name}")
    try:
        dataset = driver.Create(str(path), 0, 0, 0, gdal.GDT_Unknown)
    except RuntimeError as exc:
        raise errors.ToolkitError(str(exc)) from exc
    if dataset is None:
        raise errors.ToolkitError(f"Unable to create {driver_name} output")
    return dataset


def copy_layer_schema(
    source: ogr.Layer,
    output: gdal.Dataset,
    srs: osr.SpatialReference | None = None,
) -> ogr.Layer:
    """Create an output layer matching ``source``'s name, SRS, type and fields.

    Fields are created in source order, so output field ``i`` always holds
    source field ``i`` even when the driver renames it.

    Args:
        source: Layer whose schema is copied.
        output: Dataset receiving the new layer.
        srs: Spatial reference for the new layer; defaults to the source's.

    Raises:
        ToolkitError: If the layer or one of its fields cannot be created.
    """
    try:
        layer = output.CreateLayer(
            source.GetName(),
            srs=srs if srs is not None else source.GetSpatialRef(),
            geom_type=source.GetGeomType(),
        )
        definition = source.GetLayerDefn()
        for index in range(definition.GetFieldCount()):
            layer.CreateField(definition.GetFieldDefn(index))
    except RuntimeError as exc:
        raise errors.ToolkitError(
            f"Cannot create output layer '{source.GetName()}': {exc}"
        ) from exc
    return layer


def copy_feature(
    output: ogr.Layer,
    feature: ogr.Feature,
    geometry: ogr.Geometry | None = None,
) -> None:
    """Write ``feature`` into ``output``, optionally replacing its geometry.

    Fields are matched by position, not by name. ``output`` must have been
    created by copy_layer_schema, which adds the fields in source order;
    drivers such as ESRI Shapefile may shorten the names on the way.

    Raises:
        ToolkitError: If the feature cannot be written.
    """
    copied = ogr.Feature(output.GetLayerDefn())
    field_map = list(range(feature.GetFieldCount()))
    try:
        copied.SetFromWithMap(feature, True, field_map)
        if geometry is not None:
            copied.SetGeometry(geometry)
        output.CreateFeature(copied)
    except RuntimeError as exc:
        raise errors.ToolkitError(str(exc)) from exc


def flush(dataset: gdal.Dataset) -> None:
    try:
        dataset.FlushCache()
    except RuntimeError as exc:
        raise errors.ToolkitError(str(exc)) from exc
