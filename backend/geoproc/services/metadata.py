"""Metadata handlers: info, detailed-info and list-layers.

Each handler opens the resolved source through the toolkit adapter,
projects what GDAL reports onto the dataclasses in
:mod:`geoproc.core.models` and returns a JSON-ready dictionary. Values GDAL
does not report are rendered as sentinels ('Unknown', zero or None) so
every documented key is always present.

Example:
    >>> from geoproc.services import metadata
    >>> metadata.get_info("/data/roads.gpkg")
    {'driver': 'GPKG', 'size': {'width': 0, 'height': 0}, 'layers': 2,
     'bands': 0, 'projection': 'GEOGCS[...]', 'extent': {...}}
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any

from loguru import logger

from geoproc.core import errors
from geoproc.core import models
from geoproc.utils import gdal_helpers

if TYPE_CHECKING:
    from geoproc.core import config


def describe_layer(index: int, layer: Any) -> models.LayerDescriptor:
    """Project one GDAL layer onto a LayerDescriptor, fields included."""
    return models.LayerDescriptor(
        index=index,
        name=gdal_helpers.layer_name(layer, index),
        geometry_type=gdal_helpers.geometry_type_name(layer),
        feature_count=gdal_helpers.feature_count(layer),
        spatial_reference=gdal_helpers.spatial_reference_wkt(
            gdal_helpers.layer_spatial_reference(layer)
        ),
        extent=gdal_helpers.layer_extent(layer),
        fields=gdal_helpers.get_layer_fields(layer),
    )


def _dataset_type(layer_count: int, band_count: int) -> str:
    if layer_count and band_count:
        return "mixed"
    if band_count:
        return "raster"
    return "vector"


def get_info(path: str) -> dict[str, Any]:
    """Summarise a dataset: driver, raster size, counts, projection, extent.

    The extent is that of the first vector layer when one exists, else the
    raster's geotransform bounds, else None.

    Args:
        path: Resolved path of the dataset.

    Returns:
        Dictionary with driver, size, layers, bands, projection and extent.

    Raises:
        ToolkitError: If the dataset cannot be opened.
    """
    with gdal_helpers.open_dataset(path) as dataset:
        layers = gdal_helpers.list_layers(dataset)
        if layers:
            extent = gdal_helpers.layer_extent(layers[0])
        else:
            extent = gdal_helpers.raster_extent(dataset)
        summary = models.DatasetSummary(
            driver=gdal_helpers.driver_name(dataset),
            size=gdal_helpers.raster_size(dataset),
            layers=len(layers),
            bands=gdal_helpers.band_count(dataset),
            projection=gdal_helpers.spatial_reference_wkt(
                gdal_helpers.dataset_spatial_reference(dataset)
            ),
            extent=extent,
        )
    return dataclasses.asdict(summary)


def _sample_features(
    layer: Any,
    count: int,
    field_limit: int,
) -> list[dict[str, Any]]:
    """Read up to ``count`` features for debugging output.

    Failures are recorded inline as ``{"error": ...}`` entries and never
    propagate.
    """
    samples: list[dict[str, Any]] = []
    if count <= 0:
        return samples
    try:
        for feature in gdal_helpers.iterate_features(layer):
            try:
                geometry = gdal_helpers.feature_geometry(feature)
                samples.append(
                    {
                        "id": gdal_helpers.feature_id(feature),
                        "geometry_type": gdal_helpers.geometry_type_of(
                            geometry
                        ),
                        "properties": gdal_helpers.feature_properties(
                            feature,
                            limit=field_limit,
                        ),
                    }
                )
            except (RuntimeError, errors.ToolkitError) as exc:
                logger.warning(f"Sampling a feature failed: {exc}")
                samples.append({"error": str(exc)})
            if len(samples) >= count:
                break
    except RuntimeError as exc:
        name = gdal_helpers.layer_name(layer)
        logger.warning(f"Sampling layer '{name}' failed: {exc}")
        samples.append({"error": str(exc)})
    return samples


def get_detailed_info(path: str, settings: config.Settings) -> dict[str, Any]:
    """Describe every layer, its fields and a small feature sample.

    A layer that cannot be described is reported as an error entry in
    place; the remaining layers are still processed.

    Args:
        path: Resolved path of the dataset.
        settings: Supplies sample_feature_count and sample_field_limit.

    Returns:
        Dictionary with ``file_info`` and a ``layers`` list in native order.
    """
    with gdal_helpers.open_dataset(path) as dataset:
        layers = gdal_helpers.list_layers(dataset)
        logger.info(f"Describing {len(layers)} layers of {path}")
        described: list[dict[str, Any]] = []
        for index, layer in enumerate(layers):
            try:
                entry = dataclasses.asdict(describe_layer(index, layer))
                entry["sample_features"] = _sample_features(
                    layer,
                    settings.sample_feature_count,
                    settings.sample_field_limit,
                )
            except (RuntimeError, errors.ToolkitError) as exc:
                logger.warning(f"Describing layer {index} failed: {exc}")
                entry = {
                    "index": index,
                    "name": f"Layer_{index}_Error",
                    "error": str(exc),
                    "geometry_type": "Error",
                    "feature_count": 0,
                    "spatial_reference": "Error",
                    "extent": None,
                    "fields": [],
                    "sample_features": [],
                }
            described.append(entry)

        file_info = {
            "driver": gdal_helpers.driver_name(dataset),
            "file_path": path,
            "layer_count": len(layers),
            "type": _dataset_type(
                len(layers), gdal_helpers.band_count(dataset)
            ),
        }
    return {"file_info": file_info, "layers": described}


def list_all_layers(path: str) -> dict[str, Any]:
    """List layers with index, name, geometry type and feature count."""
    with gdal_helpers.open_dataset(path) as dataset:
        layers = [
            {
                "index": index,
                "name": gdal_helpers.layer_name(layer, index),
                "geometry_type": gdal_helpers.geometry_type_name(layer),
                "feature_count": gdal_helpers.feature_count(layer),
            }
            for index, layer in enumerate(gdal_helpers.list_layers(dataset))
        ]
        file_info = {
            "driver": gdal_helpers.driver_name(dataset),
            "layer_count": len(layers),
            "file_path": path,
        }
    return {"file_info": file_info, "layers": layers}
