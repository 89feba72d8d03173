"""Health check route."""

from fastapi import APIRouter

from ...app import Application


def create_health_router(app: Application) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["health"])

    @router.get("/health")
    async def health() -> dict:
        """Database reachability and live stream count."""
        try:
            await app.storage.ping()
            database = "ok"
        except Exception as e:
            database = f"error: {e}"
        return {
            "status": "ok" if database == "ok" else "degraded",
            "database": database,
            "connections": len(app.realtime.registry),
        }

    return router
