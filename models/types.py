from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImageRole(str, Enum):
    HERO = "hero"
    STEP = "step"
    INGREDIENT = "ingredient"
    GALLERY = "gallery"


class ExtractionMethod(str, Enum):
    """Strategy of the extraction cascade that produced a recipe."""

    JSON_LD = "json_ld"
    MICRODATA = "microdata"
    SITE_RULE = "site_rule"
    GENERIC = "generic"
    TEXT_AI = "text_ai"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NETWORK = "network"
    EXTRACTION_EMPTY = "extraction_empty"
    RETRY_EXHAUSTED = "retry_exhausted"


class Ingredient(BaseModel):
    name: str
    amount: str = ""
    unit: str = ""
    notes: Optional[str] = None


class NutritionInfo(BaseModel):
    calories: Optional[str] = None
    protein: Optional[str] = None
    carbs: Optional[str] = None
    fat: Optional[str] = None
    fiber: Optional[str] = None
    sugar: Optional[str] = None
    sodium: Optional[str] = None


class ImageDimensions(BaseModel):
    width: int
    height: int


class ImageCandidate(BaseModel):
    url: str = Field(..., description="Absolute image URL.")
    role: ImageRole = ImageRole.GALLERY
    alt_text: str = ""
    quality_score: int = Field(50, ge=0, le=100)
    dimensions: Optional[ImageDimensions] = None


class ParsedRecipe(BaseModel):
    name: str = ""
    ingredients: List[Ingredient] = Field(default_factory=list)
    instructions: str = Field("", description="Steps separated by blank lines.")
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    servings: Optional[int] = None
    cuisine: Optional[str] = None
    category: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    nutrition: Optional[NutritionInfo] = None
    source_url: str = ""
    available_images: List[ImageCandidate] = Field(default_factory=list)
    extraction_method: Optional[ExtractionMethod] = None

    @property
    def is_valid(self) -> bool:
        """A recipe is usable only with a name and at least one ingredient."""
        return bool(self.name.strip()) and len(self.ingredients) > 0


class PageMetadata(BaseModel):
    title: str = ""
    description: str = ""
    site_name: str = ""
    favicon: str = ""


class ParseAttemptResult(BaseModel):
    success: bool
    recipe: Optional[ParsedRecipe] = None
    images: List[ImageCandidate] = Field(default_factory=list)
    page_metadata: PageMetadata = Field(default_factory=PageMetadata)
    error: Optional[str] = None
    retryable: bool = True


class ParseOutcome(BaseModel):
    success: bool
    recipe: Optional[ParsedRecipe] = None
    images: List[ImageCandidate] = Field(default_factory=list)
    metadata: PageMetadata = Field(default_factory=PageMetadata)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    attempts: int = 0


class TextParseOutcome(ParseOutcome):
    confidence: int = Field(0, ge=0, le=100)
    context: str = "general"


class SiteSelectors(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    ingredients: Optional[str] = None
    instructions: Optional[str] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    servings: Optional[str] = None
    images: Optional[str] = None


class SiteRule(BaseModel):
    """Selectors and catalogue details for one recipe site.

    ``json_ld`` and ``microdata`` only describe what the site publishes; the
    extraction cascade tries structured data on every page regardless.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    domains: List[str]
    selectors: SiteSelectors = Field(default_factory=SiteSelectors)
    json_ld: bool = False
    microdata: bool = False
    features: List[str] = Field(default_factory=list)
    quality: str = "good"

    def matches(self, domain: str) -> bool:
        domain = domain.lower()
        return any(domain == d or domain.endswith("." + d) for d in self.domains)


class SiteRuleSummary(BaseModel):
    name: str
    domain: str
    features: List[str] = Field(default_factory=list)
    quality: str = "good"


class UrlValidation(BaseModel):
    valid: bool
    supported: bool = False
    domain: Optional[str] = None
    message: str = ""


class HealthStatus(BaseModel):
    status: str = Field(..., description="'healthy' or 'unhealthy'.")
    service: str = "recipe-parser"
    browser: str = Field(..., description="'ready' or 'failed'.")
    error: Optional[str] = None
    timestamp: str
    rate_limiters: Dict[str, dict] = Field(default_factory=dict)


# Request bodies for the HTTP layer

class ParseRequest(BaseModel):
    url: str = Field(..., description="The recipe page URL.")
    max_attempts: Optional[int] = Field(None, ge=1, le=5)


class ParseTextRequest(BaseModel):
    text: str = Field(..., description="Recipe text pasted from social media or a message.")
    context: Optional[str] = Field(None, description="'social_media' or 'general'.")
    source_url: Optional[str] = None


class ValidateUrlRequest(BaseModel):
    url: Optional[str] = None
