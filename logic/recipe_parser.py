import re
import json
import logging
from typing import Optional, Dict, Any, List

from langchain_core.prompts import ChatPromptTemplate
from langchain_core.output_parsers import StrOutputParser
from langchain_deepseek import ChatDeepSeek

from core.config import settings
from logic.errors import IncompleteRecipeError, RecipeValidationError, TextExtractionError
from logic.recipe_extractor import STEP_SEPARATOR, clean_text, parse_iso_duration, parse_servings
from models.types import ExtractionMethod, Ingredient, NutritionInfo, ParsedRecipe, TextParseOutcome

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 10000

SOCIAL_MEDIA = "social_media"
GENERAL = "general"

PLATFORM_NAMES = ("instagram", "tiktok", "facebook", "youtube", "pinterest", "twitter", "threads", "reels")
_HASHTAG = re.compile(r"(?<!\w)#[A-Za-z]\w*")
_EMOJI = re.compile("[\U0001F300-\U0001FAFF\u2600-\u27BF]")
_URL = re.compile(r"https?://[^\s<>\"'\])]+", re.IGNORECASE)

NUTRITION_ALIASES = {
    "calories": "calories",
    "protein": "protein",
    "carbs": "carbs",
    "carbohydrates": "carbs",
    "fat": "fat",
    "fiber": "fiber",
    "sugar": "sugar",
    "sodium": "sodium",
}

SYSTEM_PROMPT = (
    "You extract structured recipes from text that people paste from social media posts, "
    "messages or notes. The text may contain hashtags, emoji and chatter around the recipe; "
    "ignore everything that is not part of the recipe. Never invent ingredients that are not "
    "mentioned. Content context: {context}.\n\n"
    "Respond with ONLY a JSON object with these keys:\n"
    "- name: the recipe title (make a short descriptive one if none is given)\n"
    "- description: one or two sentences, or null\n"
    "- ingredients: array of objects with 'name', 'amount', 'unit', 'notes'\n"
    "- instructions: array of step strings in order\n"
    "- prep_time, cook_time, total_time: strings like '15 minutes' or null\n"
    "- servings: integer or null\n"
    "- cuisine, category, author: strings or null\n"
    "- nutrition: object with 'calories', 'protein', 'carbs', 'fat', 'fiber', 'sugar', 'sodium' or null\n"
    "- confidence: integer 0-100, how certain you are the text really describes this recipe\n\n"
    "Do not use markdown."
)


def validate_text(text: Optional[str]) -> str:
    """Trim the text and reject empty or oversized input."""
    cleaned = (text or "").strip()
    if not cleaned:
        raise RecipeValidationError("Recipe text is required")
    if len(cleaned) > MAX_TEXT_LENGTH:
        raise RecipeValidationError(f"Recipe text is too long (max {MAX_TEXT_LENGTH:,} characters)")
    return cleaned


def detect_context(text: str) -> str:
    lowered = text.lower()
    if any(name in lowered for name in PLATFORM_NAMES):
        return SOCIAL_MEDIA
    if _HASHTAG.search(text) or _EMOJI.search(text):
        return SOCIAL_MEDIA
    return GENERAL


def extract_source_url(text: str) -> Optional[str]:
    match = _URL.search(text)
    if not match:
        return None
    return match.group(0).rstrip(".,;:!?")


def _load_json_reply(reply: str) -> Dict[str, Any]:
    clean = re.sub(r"```json\s*|\s*```", "", reply or "").strip()
    start = clean.find("{")
    end = clean.rfind("}")
    if start == -1 or end <= start:
        raise TextExtractionError("Language model reply did not contain a JSON object")
    try:
        data = json.loads(clean[start:end + 1])
    except json.JSONDecodeError as e:
        raise TextExtractionError(f"Could not decode language model reply: {e}") from e
    if not isinstance(data, dict):
        raise TextExtractionError("Language model reply was not a JSON object")
    return data


def _optional_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = clean_text(value)
    return text or None


def _ingredients(values: Any) -> List[Ingredient]:
    if not isinstance(values, list):
        return []
    ingredients = []
    for item in values:
        if isinstance(item, dict):
            name = clean_text(item.get("name"))
            if not name:
                continue
            ingredients.append(Ingredient(
                name=name,
                amount=clean_text(item.get("amount") or item.get("quantity")),
                unit=clean_text(item.get("unit")),
                notes=_optional_str(item.get("notes")),
            ))
        else:
            name = clean_text(item)
            if name:
                ingredients.append(Ingredient(name=name))
    return ingredients


def _instructions(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if not isinstance(value, list):
        return ""
    steps = []
    for step in value:
        if isinstance(step, dict):
            step = step.get("text") or step.get("description") or ""
        text = clean_text(step)
        if text:
            steps.append(text)
    return STEP_SEPARATOR.join(steps)


def _nutrition(value: Any) -> Optional[NutritionInfo]:
    if not isinstance(value, dict):
        return None
    fields = {}
    for key, raw in value.items():
        field = NUTRITION_ALIASES.get(str(key).lower())
        if field and raw not in (None, ""):
            fields[field] = str(raw).strip()
    return NutritionInfo(**fields) if fields else None


def recipe_from_reply(data: Dict[str, Any], source_url: Optional[str] = None) -> ParsedRecipe:
    return ParsedRecipe(
        name=clean_text(data.get("name") or data.get("title")),
        ingredients=_ingredients(data.get("ingredients")),
        instructions=_instructions(data.get("instructions")),
        prep_time=parse_iso_duration(_optional_str(data.get("prep_time"))),
        cook_time=parse_iso_duration(_optional_str(data.get("cook_time"))),
        total_time=parse_iso_duration(_optional_str(data.get("total_time"))),
        servings=parse_servings(data.get("servings")),
        cuisine=_optional_str(data.get("cuisine")),
        category=_optional_str(data.get("category")),
        author=_optional_str(data.get("author")),
        description=_optional_str(data.get("description")),
        nutrition=_nutrition(data.get("nutrition")),
        source_url=source_url or "",
        extraction_method=ExtractionMethod.TEXT_AI,
    )


def completeness_score(recipe: ParsedRecipe) -> int:
    """Confidence estimate from how much of the recipe could be filled in."""
    score = 0
    if recipe.name:
        score += 20
    if recipe.ingredients:
        score += 35 if len(recipe.ingredients) >= 3 else 20
    if recipe.instructions:
        score += 25
    if recipe.prep_time or recipe.cook_time or recipe.total_time:
        score += 10
    if recipe.servings:
        score += 5
    if recipe.description:
        score += 5
    return min(score, 100)


def reported_confidence(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and 0 < number <= 1:
        # Some replies use a 0-1 fraction
        number *= 100
    return int(max(0, min(100, round(number))))


class TextRecipeExtractor:
    """Turns free-form recipe text into a ParsedRecipe with the help of an LLM."""

    def __init__(self, llm=None):
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            if not settings.deepseek_api_key:
                raise TextExtractionError("DEEPSEEK_API_KEY is not configured")
            self._llm = ChatDeepSeek(
                model=settings.deepseek_model,
                api_key=settings.deepseek_api_key,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        return self._llm

    def _chain(self):
        prompt_template = ChatPromptTemplate.from_messages([
            ("system", SYSTEM_PROMPT),
            ("human", "Here is the text:\n\n{text}"),
        ])
        return prompt_template | self.llm | StrOutputParser()

    async def extract(self, text: str, context_hint: Optional[str] = None,
                      source_url: Optional[str] = None) -> TextParseOutcome:
        text = validate_text(text)
        context = context_hint if context_hint in (SOCIAL_MEDIA, GENERAL) else detect_context(text)
        source_url = source_url or extract_source_url(text)
        logger.info(f"Parsing recipe from text ({len(text)} chars, context: {context})")

        try:
            reply = await self._chain().ainvoke({"text": text, "context": context})
        except TextExtractionError:
            raise
        except Exception as e:
            logger.error(f"[LLM] Error during text extraction: {e}")
            raise TextExtractionError(f"Recipe extraction failed: {e}") from e

        data = _load_json_reply(reply)
        try:
            recipe = recipe_from_reply(data, source_url)
        except (TypeError, ValueError) as e:
            logger.error(f"[LLM] Unusable recipe reply: {e}")
            raise TextExtractionError(f"Recipe extraction failed: {e}") from e
        if not recipe.is_valid:
            raise IncompleteRecipeError("Could not find a recipe name and ingredients in the text")

        confidence = reported_confidence(data.get("confidence"))
        if confidence is None:
            confidence = completeness_score(recipe)

        logger.info(f"Parsed '{recipe.name}' from text (confidence {confidence})")
        return TextParseOutcome(
            success=True,
            recipe=recipe,
            attempts=1,
            confidence=confidence,
            context=context,
        )
