"""Geospatial upload processing API endpoints.

This module provides the REST endpoint that accepts one uploaded
geospatial file together with an operation name, runs the operation
against the file and returns the result as JSON. Every request is
independent: the upload is written to a uniquely named scratch file,
resolved into a path GDAL can open (looking inside ZIP archives when
needed), handed to one handler and removed again, whatever the outcome.

Toolkit calls run on worker threads via asyncio.to_thread so one
request's GDAL work never blocks another request.

Example:
    Describe the layers of a zipped shapefile:
        >>> response = client.post(
        ...     "/process-geospatial",
        ...     files={"file": ("roads.zip", open("roads.zip", "rb"))},
        ...     data={"operation": "list-layers"},
        ... )
        >>> response.json()["layers"]
        [{"index": 0, "name": "roads", "geometry_type": "Line String",
          "feature_count": 120}]

    Extract one layer reprojected to WGS84:
        >>> response = client.post(
        ...     "/process-geospatial",
        ...     files={"file": ("city.gpkg", open("city.gpkg", "rb"))},
        ...     data={
        ...         "operation": "extract-layer",
        ...         "layerName": "parcels",
        ...         "transformCoordinates": "true",
        ...     },
        ... )
"""

from __future__ import annotations

import asyncio
import pathlib
import re
import tempfile
import time
from typing import Any

import fastapi
from loguru import logger

from geoproc.core import config, errors
from geoproc.core import models
from geoproc.services import cleanup, convert, dispatch, resolver

router = fastapi.APIRouter(tags=["processing"])

CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(filename: str) -> str:
    """Reduce a client file name to a safe basename.

    Directory components and unusual characters are dropped; archives
    always end in a lowercase ``.zip`` so GDAL's /vsizip/ handler
    recognises them.
    """
    name = pathlib.PurePosixPath(filename.replace("\\", "/")).name
    name = _UNSAFE_CHARACTERS.sub("_", name) or "upload"
    if resolver.is_archive(name):
        stem = name[: -len(resolver.ARCHIVE_SUFFIX)]
        name = f"{stem}{resolver.ARCHIVE_SUFFIX}"
    return name


def _save_upload(
    file: fastapi.UploadFile,
    storage_dir: pathlib.Path,
    max_size: int,
) -> models.UploadedFile:
    """Persist an uploaded file to scratch storage with size validation.

    The stored name is prefixed with a nanosecond timestamp and a random
    token so concurrent uploads never collide. A partially written file
    is removed when the limit is exceeded.

    Args:
        file: FastAPI UploadFile object containing the file data.
        storage_dir: Scratch directory where the file should be saved.
        max_size: Maximum allowed file size in bytes.

    Returns:
        UploadedFile describing the stored payload.

    Raises:
        UploadTooLargeError: If the file exceeds the maximum size limit.
    """
    storage_dir.mkdir(parents=True, exist_ok=True)
    original_name = file.filename or ""
    with tempfile.NamedTemporaryFile(
        delete=False,
        dir=storage_dir,
        prefix=f"{time.time_ns()}-",
        suffix=f"-{_safe_name(original_name)}",
    ) as tmp:
        target_path = pathlib.Path(tmp.name)
        size = 0
        try:
            for chunk in iter(lambda: file.file.read(CHUNK_SIZE), b""):
                size += len(chunk)
                if size > max_size:
                    raise errors.UploadTooLargeError(max_size)

                tmp.write(chunk)
        except BaseException:
            tmp.close()
            cleanup.remove_path(target_path)
            raise

        tmp.flush()

    return models.UploadedFile(
        path=target_path,
        original_name=original_name,
        size=size,
    )


@router.get("/formats")
async def list_formats() -> dict[str, list[str]]:
    """List the recognised operations and conversion output formats."""
    return {
        "operations": [operation.value for operation in dispatch.Operation],
        "conversion_formats": [
            output_format.name
            for output_format in convert.OUTPUT_FORMATS.values()
        ],
    }


@router.post("/process-geospatial")
async def process_geospatial(
    file: fastapi.UploadFile | None = fastapi.File(None),  # noqa: B008
    operation: str | None = fastapi.Form(None),  # noqa: B008
    output_format: str | None = fastapi.Form(None, alias="format"),  # noqa: B008
    layer_name: str | None = fastapi.Form(None, alias="layerName"),  # noqa: B008
    transform_coordinates: bool = fastapi.Form(  # noqa: B008
        True, alias="transformCoordinates"
    ),
    target_srs: str | None = fastapi.Form(None, alias="targetSRS"),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
) -> dict[str, Any]:
    """Run one operation against an uploaded geospatial file.

    The request is validated before anything is written or opened. The
    upload is then stored, resolved and processed; the stored file and
    any extraction artifacts are removed in every case.

    Args:
        file: Uploaded dataset (required).
        operation: info, detailed-info, list-layers, extract-layer,
            convert or reproject (required).
        output_format: Output format for convert (GeoJSON, Shapefile, KML).
        layer_name: Layer to extract for extract-layer.
        transform_coordinates: Reproject extracted features to WGS84.
        target_srs: Target reference system for reproject.
        settings: Application settings (injected via FastAPI Depends).

    Returns:
        The handler's JSON result.

    Raises:
        ClientError: Missing file, unknown operation or missing parameter.
        UploadTooLargeError: If the upload exceeds the size limit.
        ToolkitError: If GDAL fails to open or process the dataset.
    """
    if file is None or not file.filename:
        raise errors.ClientError("No file uploaded")

    job = dispatch.build_job(
        operation,
        dispatch.OperationParams(
            output_format=output_format,
            layer_name=layer_name,
            transform_coordinates=transform_coordinates,
            target_srs=target_srs,
        ),
        settings,
    )

    upload = await asyncio.to_thread(
        _save_upload,
        file,
        settings.storage_dir,
        settings.max_upload_size_bytes,
    )
    logger.info(
        f"{job.operation} requested for {upload.original_name} "
        f"({upload.size} bytes)"
    )

    source: models.ResolvedSource | None = None
    try:
        source = await asyncio.to_thread(
            resolver.resolve, upload, settings.max_extract_bytes
        )
        return await asyncio.to_thread(job.run, source.path)
    finally:
        artifacts = source.artifacts if source is not None else []
        cleanup.cleanup([upload.path, *artifacts])
