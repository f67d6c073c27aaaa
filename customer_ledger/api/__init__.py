"""
Customer Ledger API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .customers import customers_router, suppliers_router
from .records import router as records_router
from .statements import router as statements_router
from .. import __version__
from ..errors import LedgerError, NotFoundError


_STATUS_BY_ERROR = {
    NotFoundError: 404,
}


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Map typed ledger errors to HTTP responses"""
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)), 400
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "error_code": exc.code})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Invalid amounts and query parameters"""
    return JSONResponse(status_code=400, content={"detail": str(exc), "error_code": "INVALID_REQUEST"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Customer Ledger API",
        description="Customer account statements reconciled from sales, payments and linked purchases",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    # Include routers
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(statements_router, prefix="/customers", tags=["Statements"])
    app.include_router(suppliers_router, prefix="/suppliers", tags=["Suppliers"])
    app.include_router(records_router, tags=["Records"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "customer_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Customer Ledger API",
            "version": __version__,
            "description": "Read-time reconciliation of customer account statements",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "customers": "/customers",
                "suppliers": "/suppliers",
                "statement": "/customers/{customer_id}/statement",
                "balance": "/customers/{customer_id}/balance",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "customer_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
