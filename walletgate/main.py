from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import gateway as gateway_api
from .api import health
from .config import settings
from .core.gateway import get_session_gateway
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    # Credential mode is fixed for the life of the process; fail at startup if unusable
    gateway = get_session_gateway()
    yield
    await gateway.drain()
    await gateway.custody.aclose()


app = FastAPI(
    title="Wallet Gateway",
    description="Websocket session gateway for custody-delegated wallet signing",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health.router, tags=["Health"])
app.include_router(gateway_api.router, tags=["Gateway"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Wallet Gateway",
        "version": "0.1.0",
        "websocket": "/ws?token=<identity token>",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "walletgate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
