"""
PharmaLedger - Main FastAPI Application
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pharmaledger.config import settings
from pharmaledger.database import init_db
from pharmaledger.exceptions import PharmaLedgerError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Pharmacy inventory ledger and sale/dispense engine",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PharmaLedgerError)
async def pharmaledger_error_handler(request: Request, exc: PharmaLedgerError):
    """Engine errors become {"detail", "code"} with the error's HTTP status."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": settings.APP_VERSION}


@app.on_event("startup")
def create_tables():
    """Create missing tables on startup."""
    try:
        init_db()
        logger.info("Database tables ready")
    except Exception as e:
        logger.exception(f"Database initialisation failed: {e}")
        raise


# Import and include routers
from pharmaledger.api.inventory import router as inventory_router
from pharmaledger.api.transfers import router as transfers_router
from pharmaledger.api.sales import router as sales_router
from pharmaledger.api.prescriptions import router as prescriptions_router
from pharmaledger.api.insurance import router as insurance_router
from pharmaledger.api.onboarding import router as onboarding_router

app.include_router(inventory_router, prefix="/api/inventory", tags=["Inventory"])
app.include_router(transfers_router, prefix="/api/transfers", tags=["Stock Transfers"])
app.include_router(sales_router, prefix="/api/sales", tags=["Sales"])
app.include_router(prescriptions_router, prefix="/api/prescriptions", tags=["Prescriptions"])
app.include_router(insurance_router, prefix="/api/insurance", tags=["Insurance"])
app.include_router(onboarding_router, prefix="/api/onboarding", tags=["Onboarding"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pharmaledger.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
