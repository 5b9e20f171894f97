"""
Recipe scraping entry points.

RecipeScraper ties the pipeline together: per-origin admission from the rate
limiter, rendering through the shared browser, the extraction cascade and the
image extractor, wrapped in a retry loop with exponential backoff. Failures
never escape as raw exceptions; callers get a ParseOutcome that either holds a
valid recipe or a human-readable reason.
"""
import asyncio
import logging
import random
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from core.config import settings
from logic.errors import RenderError
from logic.image_extractor import extract_images
from logic.rate_limiter import DomainRateLimiter
from logic.recipe_extractor import RecipeExtractor, extract_page_metadata
from logic.recipe_parser import TextRecipeExtractor
from logic.renderer import BrowserRenderer, RenderedPage
from logic.rules_loader import SiteRuleRegistry, get_site_registry, normalize_domain
from models.types import (
    ErrorKind,
    HealthStatus,
    ImageCandidate,
    PageMetadata,
    ParseAttemptResult,
    ParseOutcome,
    ParsedRecipe,
    SiteRuleSummary,
    TextParseOutcome,
    UrlValidation,
)

logger = logging.getLogger(__name__)

NO_RECIPE_FOUND = "No recipe data found on page"
EXTRACTION_EMPTY_MESSAGE = "Could not parse recipe from this URL"

# Failures that will not go away by trying again
NON_RETRYABLE_PATTERNS = (
    "invalid url",
    "err_name_not_resolved",
    "enotfound",
    "getaddrinfo",
    "err_internet_disconnected",
    "navigation timeout",
    "protocol error",
)


def is_non_retryable(message: Optional[str]) -> bool:
    lowered = (message or "").lower()
    return any(pattern in lowered for pattern in NON_RETRYABLE_PATTERNS)


class RecipeScraper:
    def __init__(self,
                 renderer: Optional[BrowserRenderer] = None,
                 rate_limiter: Optional[DomainRateLimiter] = None,
                 registry: Optional[SiteRuleRegistry] = None,
                 text_extractor: Optional[TextRecipeExtractor] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 rng: Optional[random.Random] = None,
                 max_attempts: Optional[int] = None,
                 retry_on_empty: bool = True):
        self.renderer = renderer or BrowserRenderer()
        if rate_limiter is None:
            rate_limiter = DomainRateLimiter(idle_ttl=settings.limiter_idle_ttl)
        self.rate_limiter = rate_limiter
        self.registry = registry or get_site_registry()
        self.extractor = RecipeExtractor(self.registry)
        self.text_extractor = text_extractor or TextRecipeExtractor()
        self.max_attempts = max_attempts or settings.max_parse_attempts
        # Extraction-empty is deterministic per page; set False to stop after one render
        self.retry_on_empty = retry_on_empty
        self._sleep = sleep
        self._rng = rng or random.Random()

    def validate_url(self, url: Optional[str]) -> UrlValidation:
        """Cheap syntactic check plus site-rule lookup; never renders."""
        if not url or not url.strip():
            return UrlValidation(valid=False, message="URL is required")
        try:
            parsed = urlparse(url.strip())
            host = parsed.hostname
        except ValueError:
            return UrlValidation(valid=False, message="Invalid URL format")
        if parsed.scheme not in ("http", "https") or not host or "." not in host:
            return UrlValidation(valid=False, message="Invalid URL format")

        domain = normalize_domain(host)
        supported = self.registry.is_supported(domain)
        return UrlValidation(
            valid=True,
            supported=supported,
            domain=domain,
            message="URL is supported for recipe parsing" if supported
            else "URL is valid but may have limited parsing support",
        )

    def list_supported_domains(self) -> List[SiteRuleSummary]:
        return self.registry.summaries()

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after a failed attempt: 1s, 2s, 4s... plus up to 1s jitter."""
        return 2 ** (attempt - 1) + self._rng.uniform(0, 1)

    async def parse_from_url(self, url: str, max_attempts: Optional[int] = None) -> ParseOutcome:
        validation = self.validate_url(url)
        if not validation.valid:
            logger.warning(f"Rejected URL {url!r}: {validation.message}")
            return ParseOutcome(success=False, error=validation.message, error_kind=ErrorKind.VALIDATION)

        url = url.strip()
        attempts_allowed = max(1, max_attempts or self.max_attempts)
        last_result: Optional[ParseAttemptResult] = None
        only_empty = True

        for attempt in range(1, attempts_allowed + 1):
            logger.info(f"Parsing recipe from {url} (attempt {attempt}/{attempts_allowed})")
            async with self.rate_limiter.admission(validation.domain):
                result = await self._attempt(url)

            if result.success:
                logger.info(f"Successfully parsed recipe from {url} on attempt {attempt}")
                return ParseOutcome(
                    success=True,
                    recipe=result.recipe,
                    images=result.images,
                    metadata=result.page_metadata,
                    attempts=attempt,
                )

            last_result = result
            empty = result.error == NO_RECIPE_FOUND
            only_empty = only_empty and empty
            logger.warning(f"Attempt {attempt} failed for {url}: {result.error}")

            if not result.retryable:
                if empty:
                    return self._failure(EXTRACTION_EMPTY_MESSAGE, ErrorKind.EXTRACTION_EMPTY, attempt, result)
                logger.error(f"Non-retryable error for {url}, giving up")
                return self._failure(result.error, ErrorKind.NETWORK, attempt, result)

            if attempt < attempts_allowed:
                delay = self.backoff_delay(attempt)
                logger.info(f"Retrying {url} in {delay:.2f}s")
                await self._sleep(delay)

        if only_empty:
            return self._failure(EXTRACTION_EMPTY_MESSAGE, ErrorKind.EXTRACTION_EMPTY, attempts_allowed, last_result)
        return self._failure(
            f"Failed after {attempts_allowed} attempts: {last_result.error}",
            ErrorKind.RETRY_EXHAUSTED,
            attempts_allowed,
            last_result,
        )

    @staticmethod
    def _failure(message: str, kind: ErrorKind, attempts: int,
                 result: Optional[ParseAttemptResult]) -> ParseOutcome:
        return ParseOutcome(
            success=False,
            error=message,
            error_kind=kind,
            attempts=attempts,
            metadata=result.page_metadata if result else PageMetadata(),
        )

    async def _attempt(self, url: str) -> ParseAttemptResult:
        """One render and extract cycle; every failure becomes a result."""
        try:
            page = await self.renderer.render(url)
        except RenderError as e:
            message = str(e)
            return ParseAttemptResult(success=False, error=message,
                                      retryable=e.retryable and not is_non_retryable(message))
        except Exception as e:
            logger.error(f"Unexpected rendering failure for {url}: {e}")
            message = str(e) or e.__class__.__name__
            return ParseAttemptResult(success=False, error=message, retryable=not is_non_retryable(message))

        try:
            recipe, images, metadata = await asyncio.to_thread(self._extract, page)
        except Exception as e:
            logger.error(f"Extraction crashed for {url}: {e}")
            return ParseAttemptResult(success=False, error=f"Extraction failed: {e}")

        if recipe is None:
            return ParseAttemptResult(
                success=False,
                images=images,
                page_metadata=metadata,
                error=NO_RECIPE_FOUND,
                retryable=self.retry_on_empty,
            )

        recipe.source_url = url
        recipe.available_images = images
        return ParseAttemptResult(success=True, recipe=recipe, images=images, page_metadata=metadata)

    def _extract(self, page: RenderedPage) -> Tuple[Optional[ParsedRecipe], List[ImageCandidate], PageMetadata]:
        soup = BeautifulSoup(page.html, "html.parser")
        recipe = self.extractor.extract(soup, page.final_url)

        rule = self.registry.find(normalize_domain(urlparse(page.final_url).hostname or ""))
        try:
            images = extract_images(soup, page.final_url, site_selector=rule.selectors.images if rule else None)
        except Exception as e:
            logger.debug(f"Image extraction failed: {e}")
            images = []

        try:
            metadata = extract_page_metadata(soup, page.final_url)
        except Exception as e:
            logger.debug(f"Page metadata extraction failed: {e}")
            metadata = PageMetadata()

        return recipe, images, metadata

    async def parse_from_text(self, text: str, context_hint: Optional[str] = None,
                              source_url: Optional[str] = None) -> TextParseOutcome:
        """Raises RecipeValidationError for bad input and TextExtractionError for LLM failures."""
        return await self.text_extractor.extract(text, context_hint=context_hint, source_url=source_url)

    async def health_check(self) -> HealthStatus:
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await self.renderer.start()
        except Exception as e:
            logger.error(f"Recipe parser health check failed: {e}")
            return HealthStatus(
                status="unhealthy",
                browser="failed",
                error=str(e),
                timestamp=timestamp,
                rate_limiters=self.rate_limiter.all_stats(),
            )
        return HealthStatus(
            status="healthy",
            browser="ready",
            timestamp=timestamp,
            rate_limiters=self.rate_limiter.all_stats(),
        )

    async def shutdown(self) -> None:
        await self.renderer.stop()


@lru_cache(maxsize=1)
def get_scraper() -> RecipeScraper:
    return RecipeScraper()
