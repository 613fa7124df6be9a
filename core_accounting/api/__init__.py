"""
Ledgerline API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .accounts import router as accounts_router
from .journal import router as journal_router
from .documents import invoices_router, bills_router, router as documents_router
from .inventory import router as inventory_router
from .exchange_rates import router as exchange_rates_router
from .expenses import router as expenses_router
from .assets import router as assets_router
from .reporting import router as reporting_router
from .admin import router as admin_router
from .. import __version__


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Ledgerline Accounting API",
        description="Double-entry accounting engine for small businesses",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Chart of Accounts"])
    app.include_router(journal_router, prefix="/journal-entries", tags=["Journal"])
    app.include_router(invoices_router, prefix="/invoices", tags=["Invoices"])
    app.include_router(bills_router, prefix="/bills", tags=["Bills"])
    app.include_router(documents_router, prefix="/documents", tags=["Documents"])
    app.include_router(inventory_router, prefix="/products", tags=["Inventory"])
    app.include_router(exchange_rates_router, prefix="/exchange-rates", tags=["Exchange Rates"])
    app.include_router(expenses_router, prefix="/expenses", tags=["Expenses"])
    app.include_router(assets_router, prefix="/assets", tags=["Fixed Assets"])
    app.include_router(reporting_router, prefix="/reports", tags=["Reports"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ledgerline_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Ledgerline Accounting API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "journal-entries": "/journal-entries",
                "invoices": "/invoices",
                "bills": "/bills",
                "products": "/products",
                "exchange-rates": "/exchange-rates",
                "expenses": "/expenses",
                "assets": "/assets",
                "reports": "/reports",
                "admin": "/admin",
            }
        }

    return app


app = create_app()
