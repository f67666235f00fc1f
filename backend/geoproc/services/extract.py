"""Feature extraction handler for the extract-layer operation.

Reads every feature of one named layer, up to a configured safety cap, as
GeoJSON-shaped records. When requested, geometries are reprojected into
the configured target reference system (EPSG:4326 by default) with a
single coordinate transformation built once per call.

Transformation is best effort:

- If the layer has no spatial reference or the transformation cannot be
  built, features are returned untransformed.
- ``coordinates_transformed`` is True only when at least one geometry
  was actually transformed.
- If one feature fails to transform, that feature keeps its original
  geometry and is counted in ``transform_failures``; extraction continues.

Example:
    >>> from geoproc.core.config import get_settings
    >>> from geoproc.services import extract
    >>> result = extract.extract_layer(
    ...     "/data/roads.gpkg", "roads", True, get_settings()
    ... )
    >>> result["feature_count"], result["truncated"]
    (120, False)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from loguru import logger

from geoproc.core import errors
from geoproc.core import models
from geoproc.utils import gdal_helpers

if TYPE_CHECKING:
    from geoproc.core import config


def _available_layer_names(dataset: Any) -> list[str]:
    return [
        gdal_helpers.layer_name(layer, index)
        for index, layer in enumerate(gdal_helpers.list_layers(dataset))
    ]


def _geojson_or_none(geometry: Any) -> dict[str, Any] | None:
    try:
        return gdal_helpers.geometry_to_geojson(geometry)
    except (RuntimeError, ValueError) as exc:
        logger.warning(f"Geometry could not be exported: {exc}")
        return None


def extract_layer(
    path: str,
    layer_name: str,
    transform_coordinates: bool,
    settings: config.Settings,
) -> dict[str, Any]:
    """Extract the features of one layer, optionally reprojected.

    Args:
        path: Resolved path of the dataset.
        layer_name: Exact, case-sensitive name of the layer.
        transform_coordinates: Reproject into ``settings.target_srs``.
        settings: Supplies the target SRS and the feature cap.

    Returns:
        Dictionary describing the layer and the extracted ``features``.
        ``truncated`` is True exactly when features remained after the cap
        stopped extraction.

    Raises:
        LayerNotFoundError: If no layer has that name; lists the names.
        ToolkitError: If the dataset cannot be opened.
    """
    cap = settings.max_extract_features
    with gdal_helpers.open_dataset(path) as dataset:
        layer = gdal_helpers.get_layer(dataset, layer_name)
        if layer is None:
            raise errors.LayerNotFoundError(
                layer_name, _available_layer_names(dataset)
            )

        source_srs = gdal_helpers.layer_spatial_reference(layer)
        transform = None
        if transform_coordinates and source_srs is not None:
            try:
                transform = gdal_helpers.build_transform(
                    source_srs, settings.target_srs
                )
            except errors.ToolkitError as exc:
                logger.warning(
                    f"Layer '{layer_name}' left untransformed: {exc.message}"
                )
        elif transform_coordinates:
            logger.warning(
                f"Layer '{layer_name}' has no spatial reference; "
                "coordinates left untransformed"
            )

        features: list[dict[str, Any]] = []
        transformed = 0
        transform_failures = 0
        truncated = False
        for feature in gdal_helpers.iterate_features(layer):
            if len(features) >= cap:
                truncated = True
                break
            geometry = gdal_helpers.feature_geometry(feature)
            if transform is not None and geometry is not None:
                try:
                    geometry = gdal_helpers.transform_geometry(
                        geometry, transform
                    )
                    transformed += 1
                except errors.ToolkitError as exc:
                    transform_failures += 1
                    logger.warning(
                        f"Feature {gdal_helpers.feature_id(feature)} "
                        f"kept untransformed: {exc.message}"
                    )
            record = models.FeatureRecord(
                id=gdal_helpers.feature_id(feature),
                geometry=_geojson_or_none(geometry),
                properties=gdal_helpers.feature_properties(feature),
            )
            features.append(record.to_geojson())

        coordinates_transformed = transformed > 0
        target_srs = settings.target_srs if coordinates_transformed else None
        result = {
            "layer_name": layer_name,
            "geometry_type": gdal_helpers.geometry_type_name(layer),
            "source_srs": gdal_helpers.spatial_reference_wkt(source_srs),
            "target_srs": target_srs,
            "transform_requested": transform_coordinates,
            "coordinates_transformed": coordinates_transformed,
            "transform_failures": transform_failures,
            "total_features": gdal_helpers.feature_count(layer),
            "feature_count": len(features),
            "max_features": cap,
            "truncated": truncated,
            "features": features,
        }

    if truncated:
        logger.info(f"Extraction of '{layer_name}' stopped at {cap} features")
    return result
