from attestgate.core.routers.health.health import router as health_router

__all__ = ["health_router"]
