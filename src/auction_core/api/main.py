"""Auction Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auction_core import __version__
from auction_core.config import get_settings
from auction_core.database import SessionLocal
from auction_core.scheduler import AuctionSweeper

from .routers import auctions, organizations, tasks, users

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("auction-core")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = AuctionSweeper(SessionLocal, settings)
    if settings.sweep_enabled:
        sweeper.start()
    app.state.sweeper = sweeper
    logger.info("Starting Auction Core API")
    try:
        yield
    finally:
        sweeper.shutdown()


# Create FastAPI app
app = FastAPI(
    title="Auction Core API",
    description="Auction-based task allocation",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all business logic routers with /api/v1 prefix
app.include_router(organizations.router, prefix="/api/v1/organizations")
app.include_router(users.router, prefix="/api/v1/users")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(auctions.router, prefix="/api/v1/auctions")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "Auction Core API",
        "version": __version__,
        "docs": "/docs",
        "description": "Auction-based task allocation",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
