"""API router subpackage for the GeoSpot backend.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - datasets: Upload, list, detail, GeoJSON export and delete endpoints.
    - health: Liveness, database health and readiness probes.
"""
