import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leaveflow.core.config import get_settings
from leaveflow.core.logger import configure_from_settings
from leaveflow.api.routers import health, requests

settings = get_settings()
configure_from_settings(settings)

app = FastAPI(
    title=settings.app_name,
    description="Multi-level leave and outpass approval workflow",
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(requests.router, prefix="/api")
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else None,
    }


def run():
    """Serve the API with uvicorn."""
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
