"""Package initializer for the geospatial processing service.

This package implements a small FastAPI service that accepts one uploaded
geospatial file per request (vector or raster, optionally packed in a ZIP
archive), hands it to GDAL and returns JSON describing or converting it.

- Uploads are stored under a unique scratch name and always removed
- ZIP archives are resolved through GDAL's /vsizip/ filesystem, falling
  back to extraction when no virtual path opens
- info, detailed-info and list-layers describe drivers, layers and fields
- extract-layer returns features as GeoJSON, reprojected to WGS84 on request
- convert and reproject re-encode every layer as GeoJSON, KML or Shapefile

All GDAL access goes through geoproc.utils.gdal_helpers. See the module
docstrings for details on each stage of the pipeline.
"""
