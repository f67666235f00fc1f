"""Data models for uploads and dataset descriptions.

This module defines the structures that flow between the upload receiver,
the path resolver and the handlers. Descriptions of datasets, layers,
fields and features are read-only projections of what GDAL reports; they
are converted to plain dictionaries with dataclasses.asdict() before being
returned as JSON.

Example:
    Describing a layer:
        >>> from geoproc.core.models import Extent, LayerDescriptor
        >>> layer = LayerDescriptor(
        ...     index=0,
        ...     name="roads",
        ...     geometry_type="Line String",
        ...     feature_count=120,
        ...     spatial_reference="GEOGCS[...]",
        ...     extent=Extent(min_x=15.9, min_y=45.7, max_x=16.1, max_y=45.9),
        ... )
"""

from __future__ import annotations

import dataclasses
import pathlib
from typing import Any

UNKNOWN = "Unknown"


@dataclasses.dataclass(frozen=True)
class UploadedFile:
    """A multipart upload persisted to scratch storage.

    Attributes:
        path: Location of the stored payload.
        original_name: File name as sent by the client.
        size: Number of bytes written.
    """

    path: pathlib.Path
    original_name: str
    size: int


@dataclasses.dataclass
class ResolvedSource:
    """A path GDAL can open directly, plus anything created to get there.

    Attributes:
        path: Plain or /vsizip/ path handed to the toolkit.
        strategy: Name of the resolution step that produced the path.
        artifacts: Secondary scratch files or directories to remove.
    """

    path: str
    strategy: str = "direct"
    artifacts: list[pathlib.Path] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Extent:
    min_x: float
    min_y: float
    max_x: float
    max_y: float


@dataclasses.dataclass
class RasterSize:
    width: int = 0
    height: int = 0


@dataclasses.dataclass
class DatasetSummary:
    """Summary returned by the info operation.

    Absent values are rendered as sentinels rather than omitted:
    'Unknown' for text, zero for counts and sizes, None for the extent.
    """

    driver: str = UNKNOWN
    size: RasterSize = dataclasses.field(default_factory=RasterSize)
    layers: int = 0
    bands: int = 0
    projection: str = UNKNOWN
    extent: Extent | None = None


@dataclasses.dataclass
class FieldDescriptor:
    name: str
    type: str
    width: int | None = None
    precision: int | None = None
    nullable: bool = True
    default: str | None = None
    justification: str | None = None


@dataclasses.dataclass
class LayerDescriptor:
    """One vector layer, in the toolkit's native index order."""

    index: int
    name: str
    geometry_type: str = UNKNOWN
    feature_count: int = 0
    spatial_reference: str = UNKNOWN
    extent: Extent | None = None
    fields: list[FieldDescriptor] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class FeatureRecord:
    id: int | None
    geometry: dict[str, Any] | None
    properties: dict[str, Any]

    def to_geojson(self) -> dict[str, Any]:
        """Render as a GeoJSON Feature mapping."""
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": self.geometry,
            "properties": self.properties,
        }
