"""Resolve an uploaded file into a path the toolkit can open.

Plain uploads are handed to GDAL unchanged. ZIP uploads are probed through
GDAL's ``/vsizip/`` virtual filesystem using an ordered list of candidate
builders, because the archive's internal layout and casing are unknown in
advance. Each builder is a pure function of the scratch path and the
client's file name; the first candidate GDAL can open wins. Every probe
closes its dataset immediately.

When no virtual path opens, the archive is extracted into a fresh scratch
directory and scanned for a recognised dataset: a File Geodatabase
directory first, then a shapefile, then single-file formats in the order
of SINGLE_FILE_EXTENSIONS. The extraction directory is returned as an
artifact so request cleanup removes it.

Example:
    >>> from geoproc.core import models
    >>> from geoproc.services import resolver

    >>> upload = models.UploadedFile(
    ...     path=Path("/tmp/geoproc/uploads/1700-ab12-parcels.gdb.zip"),
    ...     original_name="parcels.gdb.zip",
    ...     size=10240,
    ... )
    >>> source = resolver.resolve(upload)
    >>> source.path, source.strategy
    ('/vsizip//tmp/geoproc/uploads/1700-ab12-parcels.gdb.zip', 'vsizip-root')
"""

from __future__ import annotations

import pathlib
import tempfile
import zipfile
from collections.abc import Callable

from loguru import logger

from geoproc.core import errors
from geoproc.core import models
from geoproc.services import cleanup
from geoproc.utils import gdal_helpers

ARCHIVE_SUFFIX = ".zip"
VSIZIP_PREFIX = "/vsizip/"
GEODATABASE_SUFFIX = ".gdb"
SHAPEFILE_SUFFIX = ".shp"
SINGLE_FILE_EXTENSIONS = (
    ".gpkg",
    ".geojson",
    ".json",
    ".kml",
    ".kmz",
    ".gml",
    ".gpx",
    ".fgb",
    ".tab",
    ".mif",
    ".sqlite",
    ".csv",
    ".tif",
    ".tiff",
    ".img",
    ".vrt",
)
_MACOS_METADATA = "__MACOSX"

Probe = Callable[[pathlib.Path, str], str | None]


def is_archive(filename: str) -> bool:
    return filename.lower().endswith(ARCHIVE_SUFFIX)


def archive_entry_name(filename: str) -> str:
    """Strip the .zip suffix: "roads.gdb.zip" becomes "roads.gdb"."""
    name = pathlib.PurePath(filename).name
    return name[: -len(ARCHIVE_SUFFIX)]


def _vsizip(scratch_path: pathlib.Path, entry: str | None = None) -> str:
    root = f"{VSIZIP_PREFIX}{scratch_path}"
    return f"{root}/{entry}" if entry else root


def probe_archive_root(
    scratch_path: pathlib.Path, filename: str
) -> str | None:
    return _vsizip(scratch_path)


def probe_entry_verbatim(
    scratch_path: pathlib.Path, filename: str
) -> str | None:
    entry = archive_entry_name(filename)
    return _vsizip(scratch_path, entry) if entry else None


def _with_suffix_case(filename: str, upper: bool) -> str | None:
    entry = pathlib.PurePath(archive_entry_name(filename))
    if not entry.suffix:
        return None
    suffix = entry.suffix.upper() if upper else entry.suffix.lower()
    return f"{entry.stem}{suffix}"


def probe_entry_upper_suffix(
    scratch_path: pathlib.Path, filename: str
) -> str | None:
    entry = _with_suffix_case(filename, upper=True)
    return _vsizip(scratch_path, entry) if entry else None


def probe_entry_lower_suffix(
    scratch_path: pathlib.Path, filename: str
) -> str | None:
    entry = _with_suffix_case(filename, upper=False)
    return _vsizip(scratch_path, entry) if entry else None


ARCHIVE_PROBES: tuple[tuple[str, Probe], ...] = (
    ("vsizip-root", probe_archive_root),
    ("vsizip-entry", probe_entry_verbatim),
    ("vsizip-entry-upper", probe_entry_upper_suffix),
    ("vsizip-entry-lower", probe_entry_lower_suffix),
)


def _extract_archive(
    archive: pathlib.Path,
    target: pathlib.Path,
    max_bytes: int | None = None,
) -> None:
    """Extract ``archive`` into ``target``, skipping members that escape it.

    Nothing is written when the members' declared uncompressed sizes add
    up to more than ``max_bytes``.
    """
    root = target.resolve()
    try:
        with zipfile.ZipFile(archive) as zip_file:
            members = zip_file.infolist()
            total = sum(member.file_size for member in members)
            if max_bytes is not None and total > max_bytes:
                raise errors.UnsupportedDatasetError(
                    f"Archive expands to {total} bytes "
                    f"(limit {max_bytes} bytes)"
                )
            for member in members:
                destination = (root / member.filename).resolve()
                if not destination.is_relative_to(root):
                    logger.warning(
                        f"Skipping escaping member: {member.filename}"
                    )
                    continue
                zip_file.extract(member, root)
    except (zipfile.BadZipFile, OSError) as exc:
        raise errors.UnsupportedDatasetError(
            f"Cannot extract archive: {exc}"
        ) from exc


def find_dataset(root: pathlib.Path) -> pathlib.Path | None:
    """Locate the first recognised dataset below ``root``.

    Geodatabase directories take priority over shapefiles, which take
    priority over the single-file formats in SINGLE_FILE_EXTENSIONS order.
    Within a tier, entries are taken in sorted path order.
    """
    entries = sorted(
        entry
        for entry in root.rglob("*")
        if _MACOS_METADATA not in entry.relative_to(root).parts
    )
    for entry in entries:
        if entry.is_dir() and entry.suffix.lower() == GEODATABASE_SUFFIX:
            return entry
    for entry in entries:
        if entry.is_file() and entry.suffix.lower() == SHAPEFILE_SUFFIX:
            return entry
    for extension in SINGLE_FILE_EXTENSIONS:
        for entry in entries:
            if entry.is_file() and entry.suffix.lower() == extension:
                return entry
    return None


def _extract_and_locate(
    upload: models.UploadedFile,
    max_bytes: int | None = None,
) -> models.ResolvedSource:
    target = pathlib.Path(
        tempfile.mkdtemp(
            prefix=f"{upload.path.name}.",
            suffix=".extracted",
            dir=upload.path.parent,
        )
    )
    try:
        _extract_archive(upload.path, target, max_bytes)
        found = find_dataset(target)
    except errors.ProcessingError:
        cleanup.remove_path(target)
        raise
    if found is None:
        cleanup.remove_path(target)
        raise errors.UnsupportedDatasetError(
            f"No supported dataset found in {upload.original_name}"
        )
    logger.info(f"Resolved {upload.original_name} by extraction: {found.name}")
    return models.ResolvedSource(
        path=str(found),
        strategy="extracted",
        artifacts=[target],
    )


def resolve(
    upload: models.UploadedFile,
    max_extract_bytes: int | None = None,
) -> models.ResolvedSource:
    """Turn a stored upload into something GDAL can open.

    Args:
        upload: The upload as stored in scratch storage.
        max_extract_bytes: Limit on the uncompressed size of an archive
            extracted by the fallback; None for no limit.

    Returns:
        ResolvedSource naming the path and the strategy that produced it.

    Raises:
        UnsupportedDatasetError: If an archive holds no recognised dataset
            or expands beyond ``max_extract_bytes``.
    """
    if not is_archive(upload.original_name):
        return models.ResolvedSource(path=str(upload.path))

    tried: set[str] = set()
    for strategy, build_candidate in ARCHIVE_PROBES:
        candidate = build_candidate(upload.path, upload.original_name)
        if candidate is None or candidate in tried:
            continue
        tried.add(candidate)
        logger.debug(f"Probing {strategy}: {candidate}")
        if gdal_helpers.probe(candidate):
            logger.info(f"Resolved {upload.original_name} via {strategy}")
            return models.ResolvedSource(path=candidate, strategy=strategy)

    return _extract_and_locate(upload, max_extract_bytes)
