from fastapi import FastAPI
from smartlink_app.config import settings
from smartlink_app.database.connection import engine, Base
from smartlink_app.api.v1 import urls, routing, variants, redirect

# Importing the models registers their tables on Base
from smartlink_app.models import URL, RoutingRule, URLVariant  # noqa: F401

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="URL shortener with smart routing rules and A/B variants",
    debug=settings.debug
)


@app.get("/")
def read_root():
    """Service name, version and where to find the API docs"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "templates": "/api/v1/routing/templates",
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.environment,
        "cache_backend": settings.cache_backend,
        "queue_backend": settings.queue_backend,
    }


api_routers = [urls.router, routing.router, routing.templates_router, variants.router]
for api_router in api_routers:
    app.include_router(api_router, prefix="/api/v1")

# /{short_code} matches almost anything, so it is registered after the API
app.include_router(redirect.router)
