import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from api.routes import router as recipes_router
from core.config import settings, setup_logging
from core.limiter import limiter
from logic.web_scraper import get_scraper

# --- App Initialization ---
setup_logging()

app = FastAPI(
    title="Recipe Parser",
    description="Extract structured recipes from recipe web pages and pasted text",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(recipes_router, prefix="/api/v1")


@app.on_event("shutdown")
async def shutdown_event():
    """Close the shared browser."""
    try:
        await get_scraper().shutdown()
        logging.info("Recipe scraper shut down")
    except Exception as e:
        logging.error(f"Failed to shut down recipe scraper: {e}")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "Server is running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000)
