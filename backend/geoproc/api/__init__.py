"""API router subpackage for the geospatial processing service.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - process: Upload endpoint that runs one operation against a file, and
      the listing of supported operations and conversion formats.
"""
