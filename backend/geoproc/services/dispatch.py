"""Map operation names to handlers and validate their parameters.

Validation happens entirely before path resolution, so a malformed
request never reaches the toolkit. The result is a bound Job that the API
runs against the resolved dataset path.

Example:
    >>> from geoproc.services import dispatch
    >>> job = dispatch.build_job(
    ...     "extract-layer",
    ...     dispatch.OperationParams(layer_name="roads"),
    ...     settings,
    ... )
    >>> job.run("/data/roads.gpkg")["layer_name"]
    'roads'
"""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from geoproc.core import errors
from geoproc.services import convert, extract, metadata

if TYPE_CHECKING:
    from geoproc.core import config


class Operation(enum.StrEnum):
    INFO = "info"
    DETAILED_INFO = "detailed-info"
    LIST_LAYERS = "list-layers"
    EXTRACT_LAYER = "extract-layer"
    CONVERT = "convert"
    REPROJECT = "reproject"


@dataclasses.dataclass(frozen=True)
class OperationParams:
    """Operation-specific form fields.

    Attributes:
        output_format: Target format for convert; GeoJSON when omitted.
        layer_name: Layer to read for extract-layer (required there).
        transform_coordinates: Reproject extracted features to WGS84.
        target_srs: Target reference system for reproject (required there).
    """

    output_format: str | None = None
    layer_name: str | None = None
    transform_coordinates: bool = True
    target_srs: str | None = None


@dataclasses.dataclass(frozen=True)
class Job:
    operation: Operation
    handler: Callable[..., dict[str, Any]]
    arguments: dict[str, Any] = dataclasses.field(default_factory=dict)

    def run(self, path: str) -> dict[str, Any]:
        """Execute the handler against a resolved dataset path."""
        return self.handler(path, **self.arguments)


def parse_operation(value: str | None) -> Operation:
    """Return the Operation named by ``value``.

    Raises:
        UnknownOperationError: If ``value`` is missing or not recognised.
    """
    if not value:
        raise errors.UnknownOperationError(value)
    try:
        return Operation(value.strip())
    except ValueError:
        raise errors.UnknownOperationError(value) from None


def _require(value: str | None, parameter: str, operation: Operation) -> str:
    if value is None or not value.strip():
        raise errors.MissingParameterError(parameter, operation)
    return value


def build_job(
    operation: str | None,
    params: OperationParams,
    settings: config.Settings,
) -> Job:
    """Validate a request and bind it to its handler.

    Args:
        operation: Raw operation name from the request.
        params: Operation-specific parameters.
        settings: Application settings forwarded to handlers that need them.

    Returns:
        Job ready to run against a resolved dataset path.

    Raises:
        UnknownOperationError: For a missing or unrecognised operation.
        MissingParameterError: When a required parameter is absent.
        UnsupportedFormatError: When convert names an unknown format.
    """
    selected = parse_operation(operation)
    match selected:
        case Operation.INFO:
            return Job(selected, metadata.get_info)
        case Operation.DETAILED_INFO:
            return Job(
                selected, metadata.get_detailed_info, {"settings": settings}
            )
        case Operation.LIST_LAYERS:
            return Job(selected, metadata.list_all_layers)
        case Operation.EXTRACT_LAYER:
            layer_name = _require(params.layer_name, "layerName", selected)
            return Job(
                selected,
                extract.extract_layer,
                {
                    "layer_name": layer_name,
                    "transform_coordinates": params.transform_coordinates,
                    "settings": settings,
                },
            )
        case Operation.CONVERT:
            output_format = convert.lookup_format(
                params.output_format or convert.GEOJSON.name
            )
            return Job(
                selected,
                convert.convert_file,
                {"output_format": output_format.name, "settings": settings},
            )
        case Operation.REPROJECT:
            target_srs = _require(params.target_srs, "targetSRS", selected)
            return Job(
                selected,
                convert.reproject_file,
                {"target_srs": target_srs.strip(), "settings": settings},
            )
    raise errors.UnknownOperationError(operation)
