"""
Checkbook API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging
from .banks import router as banks_router
from .checkbooks import router as checkbooks_router
from .checks import router as checks_router
from .regions import router as regions_router
from .suppliers import router as suppliers_router
from .audit import router as audit_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Checkbook API",
        description="Checkbook inventory and check numbering engine",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_config().cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(banks_router, prefix="/banks", tags=["Banks"])
    app.include_router(checkbooks_router, prefix="/checkbooks", tags=["Checkbooks"])
    app.include_router(checks_router, prefix="/checks", tags=["Checks"])
    app.include_router(regions_router, prefix="/regions", tags=["Regions"])
    app.include_router(suppliers_router, prefix="/suppliers", tags=["Suppliers"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "checkbook_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Checkbook API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "banks": "/banks",
                "checkbooks": "/checkbooks",
                "checks": "/checks",
                "regions": "/regions",
                "suppliers": "/suppliers",
                "audit": "/audit",
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "checkbook_core.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
