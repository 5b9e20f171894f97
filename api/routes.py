import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from core.limiter import PARSE_RATE_LIMIT, limiter
from logic.errors import IncompleteRecipeError, RecipeValidationError, TextExtractionError
from logic.web_scraper import RecipeScraper, get_scraper
from models.types import ErrorKind, ParseRequest, ParseTextRequest, ValidateUrlRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/recipes/parse", tags=["Recipes"])
@limiter.limit(PARSE_RATE_LIMIT)
async def parse_recipe(request: Request, payload: ParseRequest, scraper: RecipeScraper = Depends(get_scraper)):
    logger.info(f"Parsing recipe from URL: {payload.url}")
    outcome = await scraper.parse_from_url(payload.url, max_attempts=payload.max_attempts)
    if not outcome.success:
        status_code = 400 if outcome.error_kind == ErrorKind.VALIDATION else 422
        logger.error(f"Recipe parsing failed for {payload.url}: {outcome.error}")
        raise HTTPException(status_code=status_code, detail=outcome.error)
    return {
        "success": True,
        "data": outcome.recipe,
        "images": outcome.images,
        "metadata": outcome.metadata,
        "attempts": outcome.attempts,
        "message": "Recipe parsed successfully",
    }


@router.post("/recipes/parse-text", tags=["Recipes"])
@limiter.limit(PARSE_RATE_LIMIT)
async def parse_recipe_text(request: Request, payload: ParseTextRequest, scraper: RecipeScraper = Depends(get_scraper)):
    try:
        outcome = await scraper.parse_from_text(payload.text, context_hint=payload.context,
                                                source_url=payload.source_url)
    except IncompleteRecipeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RecipeValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TextExtractionError as e:
        logger.error(f"Recipe text parsing error (length {len(payload.text)}): {e}")
        raise HTTPException(status_code=422, detail="Failed to parse recipe from text. Please check the format and try again.")
    return {
        "success": True,
        "data": outcome.recipe,
        "confidence": outcome.confidence,
        "context": outcome.context,
        "message": "Recipe parsed successfully from text",
    }


@router.post("/recipes/validate-url", tags=["Recipes"])
async def validate_url(payload: ValidateUrlRequest, scraper: RecipeScraper = Depends(get_scraper)):
    if not payload.url:
        raise HTTPException(status_code=400, detail="URL is required")
    result = scraper.validate_url(payload.url)
    return {"success": result.valid, **result.model_dump()}


@router.get("/recipes/supported-domains", tags=["Recipes"])
async def supported_domains(scraper: RecipeScraper = Depends(get_scraper)):
    sites = scraper.list_supported_domains()
    return {
        "success": True,
        "data": {
            "supported_sites": sites,
            "total_sites": len(sites),
            "parsing_methods": list(scraper.registry.parsing_methods),
        },
    }


@router.get("/recipes/health", tags=["Health"])
async def parser_health(scraper: RecipeScraper = Depends(get_scraper)):
    health = await scraper.health_check()
    healthy = health.status == "healthy"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"success": healthy, "data": jsonable_encoder(health)},
    )
