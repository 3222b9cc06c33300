import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from smartpaste.config import settings

# Debug-level engine logs are for development builds only
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = FastAPI(
    title="SmartPaste API",
    description="Parse bank SMS and pasted receipts into transactions, and learn from corrections",
    version="0.1.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "message": "SmartPaste API",
        "version": "0.1.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

# Import routers
from smartpaste.routers import smart_paste, learning

# Include routers
app.include_router(smart_paste.router)
app.include_router(learning.router)
