"""
Recipe extraction cascade.

Strategies run in a fixed order against the rendered document and the first
result that has a name and at least one ingredient wins:

1. JSON-LD structured data
2. Microdata (itemtype/itemprop)
3. Site-specific selectors from the site-rule registry
4. Generic selectors that work on many blog-style recipe pages

A strategy that raises or returns an incomplete recipe simply hands over to the
next one; if none succeeds the cascade returns None.
"""
import json
import logging
import re
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

import extruct
from bs4 import BeautifulSoup, Tag

from logic.rules_loader import SiteRuleRegistry, get_site_registry, normalize_domain
from models.types import (
    ExtractionMethod,
    Ingredient,
    NutritionInfo,
    PageMetadata,
    ParsedRecipe,
    SiteRule,
)

logger = logging.getLogger(__name__)

STEP_SEPARATOR = "\n\n"

TITLE_SELECTORS = ["h1", ".recipe-title", ".entry-title", ".post-title"]
INGREDIENT_SELECTORS = [
    ".recipe-ingredient",
    ".ingredient",
    ".ingredients li",
    '[class*="ingredient"]',
]
INSTRUCTION_SELECTORS = [
    ".recipe-instructions li",
    ".instructions li",
    ".directions li",
    ".method li",
    '[class*="instruction"] li',
]

NUTRITION_KEYS = {
    "calories": "calories",
    "proteinContent": "protein",
    "carbohydrateContent": "carbs",
    "fatContent": "fat",
    "fiberContent": "fiber",
    "sugarContent": "sugar",
    "sodiumContent": "sodium",
}

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)


def parse_iso_duration(duration: Any) -> Optional[str]:
    """Turn an ISO-8601 duration into a readable string.

    ``PT1H30M`` becomes ``1h 30m`` and ``PT45M`` becomes ``45 minutes``.
    Anything that is not an ISO duration is returned unchanged.
    """
    if duration is None:
        return None
    if not isinstance(duration, str):
        return str(duration)
    value = duration.strip()
    if not value:
        return None
    match = _ISO_DURATION.match(value)
    if not match or value.upper() in ("P", "PT"):
        return duration
    hours = int(match.group("hours") or 0) + 24 * int(match.group("days") or 0)
    minutes = int(match.group("minutes") or 0)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes} minutes"


def parse_servings(value: Any) -> Optional[int]:
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    match = re.search(r"\d+", str(value))
    if not match:
        return None
    servings = int(match.group())
    return servings or None


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Tag):
        value = value.get_text(" ", strip=True)
    return " ".join(str(value).split())


def _first_string(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, str) and v.strip()), None)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _author_name(value: Any) -> Optional[str]:
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("name")
    return _first_string(value)


def _instruction_steps(value: Any) -> List[str]:
    """Flatten recipeInstructions (strings, HowToStep, HowToSection, lists)."""
    steps: List[str] = []

    def _walk(node):
        if not node:
            return
        if isinstance(node, str):
            text = clean_text(node)
            if text:
                steps.append(text)
        elif isinstance(node, list):
            for item in node:
                _walk(item)
        elif isinstance(node, dict):
            if "itemListElement" in node:
                _walk(node.get("itemListElement"))
                return
            text = node.get("text") or node.get("name") or ""
            if isinstance(text, str) and text.strip():
                steps.append(clean_text(text))

    _walk(value)
    return steps


def _ingredients_from(values: Iterable[Any]) -> List[Ingredient]:
    ingredients = []
    for value in values:
        if isinstance(value, dict):
            value = value.get("name") or value.get("text")
        text = clean_text(value)
        if text:
            ingredients.append(Ingredient(name=text))
    return ingredients


def _nutrition_from(data: Any) -> Optional[NutritionInfo]:
    if not isinstance(data, dict):
        return None
    values = {}
    for source_key, field in NUTRITION_KEYS.items():
        raw = data.get(source_key)
        if raw is not None and raw != "":
            values[field] = str(raw).strip()
    return NutritionInfo(**values) if values else None


def _is_recipe_type(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    kind = node.get("@type", node.get("type"))
    if isinstance(kind, list):
        return "Recipe" in kind
    return kind == "Recipe"


def _json_ld_candidates(payload: Any) -> Iterable[dict]:
    items = payload if isinstance(payload, list) else [payload]
    for item in items:
        if not isinstance(item, dict):
            continue
        yield item
        graph = item.get("@graph")
        if isinstance(graph, list):
            for node in graph:
                if isinstance(node, dict):
                    yield node


def find_json_ld_recipe(soup: BeautifulSoup) -> Optional[dict]:
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text() or ""
        if not raw.strip():
            continue
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug(f"Failed to parse JSON-LD block: {e}")
            continue
        for candidate in _json_ld_candidates(payload):
            if _is_recipe_type(candidate):
                return candidate
    return None


def recipe_from_json_ld(data: dict) -> ParsedRecipe:
    ingredients = data.get("recipeIngredient")
    if ingredients is None:
        ingredients = data.get("ingredients") or []
    if isinstance(ingredients, str):
        ingredients = [ingredients]

    return ParsedRecipe(
        name=clean_text(_first_string(data.get("name"))),
        ingredients=_ingredients_from(ingredients),
        instructions=STEP_SEPARATOR.join(_instruction_steps(data.get("recipeInstructions"))),
        prep_time=parse_iso_duration(data.get("prepTime")),
        cook_time=parse_iso_duration(data.get("cookTime")),
        total_time=parse_iso_duration(data.get("totalTime")),
        servings=parse_servings(data.get("recipeYield")),
        cuisine=_first_string(data.get("recipeCuisine")),
        category=_first_string(data.get("recipeCategory")),
        author=_author_name(data.get("author")),
        description=_first_string(data.get("description")),
        nutrition=_nutrition_from(data.get("nutrition")),
    )


def extract_json_ld(soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
    data = find_json_ld_recipe(soup)
    if data is None:
        return None
    return recipe_from_json_ld(data)


# --- Microdata ---

def _unwrap_microdata(value: Any) -> Any:
    """Flatten extruct's {"type", "properties"} items into JSON-LD shaped dicts."""
    if isinstance(value, list):
        return [_unwrap_microdata(v) for v in value]
    if isinstance(value, dict) and "properties" in value:
        item = {"@type": value.get("type")}
        item.update({k: _unwrap_microdata(v) for k, v in (value.get("properties") or {}).items()})
        return item
    return value


def find_microdata_recipe(html: str, url: str = "") -> Optional[dict]:
    data = extruct.extract(html, base_url=url or None, syntaxes=["microdata"])
    for item in data.get("microdata", []):
        if isinstance(item, dict) and "Recipe" in str(item.get("type", "")):
            return _unwrap_microdata(item)
    return None


def extract_microdata(soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
    data = find_microdata_recipe(str(soup), url)
    if data is None:
        return None
    if "recipeIngredient" not in data and "ingredients" in data:
        data["recipeIngredient"] = data["ingredients"]
    # Text content of a single instructions element keeps one step per line
    instructions = data.get("recipeInstructions")
    if isinstance(instructions, str):
        data["recipeInstructions"] = [line for line in instructions.splitlines() if line.strip()]
    return recipe_from_json_ld(data)


# --- Selector based strategies ---

def _select_texts(soup: BeautifulSoup, selector: Optional[str], min_length: int = 1) -> List[str]:
    if not selector:
        return []
    texts = (clean_text(el) for el in soup.select(selector))
    return [t for t in texts if len(t) >= min_length]


def _select_first_text(soup: BeautifulSoup, selector: Optional[str]) -> str:
    if not selector:
        return ""
    el = soup.select_one(selector)
    return clean_text(el) if el is not None else ""


def extract_with_site_rule(soup: BeautifulSoup, rule: SiteRule) -> Optional[ParsedRecipe]:
    selectors = rule.selectors
    name = _select_first_text(soup, selectors.title)
    ingredients = _ingredients_from(_select_texts(soup, selectors.ingredients))
    if not name or not ingredients:
        return None
    return ParsedRecipe(
        name=name,
        ingredients=ingredients,
        instructions=STEP_SEPARATOR.join(_select_texts(soup, selectors.instructions)),
        prep_time=_select_first_text(soup, selectors.prep_time) or None,
        cook_time=_select_first_text(soup, selectors.cook_time) or None,
        servings=parse_servings(_select_first_text(soup, selectors.servings)),
    )


def extract_generic(soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
    name = ""
    for selector in TITLE_SELECTORS:
        title = _select_first_text(soup, selector)
        if len(title) > 5:
            name = title
            break

    ingredients: List[Ingredient] = []
    for selector in INGREDIENT_SELECTORS:
        elements = soup.select(selector)
        if len(elements) > 2:
            ingredients = _ingredients_from(t for t in (clean_text(el) for el in elements) if len(t) > 2)
            break

    if not name or not ingredients:
        return None

    steps: List[str] = []
    for selector in INSTRUCTION_SELECTORS:
        steps = _select_texts(soup, selector)
        if steps:
            break

    return ParsedRecipe(name=name, ingredients=ingredients, instructions=STEP_SEPARATOR.join(steps))


def extract_page_metadata(soup: BeautifulSoup, url: str = "") -> PageMetadata:
    title = clean_text(soup.title) if soup.title else ""
    description = soup.find("meta", attrs={"name": "description"})
    site_name = soup.find("meta", attrs={"property": "og:site_name"})
    icon = soup.find("link", rel="icon")
    favicon = icon.get("href", "") if icon else ""
    return PageMetadata(
        title=title,
        description=clean_text(description.get("content")) if description else "",
        site_name=clean_text(site_name.get("content")) if site_name else "",
        favicon=urljoin(url, favicon) if favicon and url else favicon,
    )


Strategy = Callable[[BeautifulSoup, str], Optional[ParsedRecipe]]


class RecipeExtractor:
    """Runs the extraction strategies in priority order."""

    def __init__(self, registry: Optional[SiteRuleRegistry] = None):
        self.registry = registry or get_site_registry()
        self.strategies: Sequence[Tuple[ExtractionMethod, Strategy]] = (
            (ExtractionMethod.JSON_LD, extract_json_ld),
            (ExtractionMethod.MICRODATA, extract_microdata),
            (ExtractionMethod.SITE_RULE, self._extract_site_specific),
            (ExtractionMethod.GENERIC, extract_generic),
        )

    def _extract_site_specific(self, soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
        rule = self.registry.find(normalize_domain(urlparse(url).hostname or ""))
        if rule is None:
            return None
        logger.debug("Applying site rule '%s'", rule.name)
        return extract_with_site_rule(soup, rule)

    def extract(self, soup: BeautifulSoup, url: str) -> Optional[ParsedRecipe]:
        for method, strategy in self.strategies:
            try:
                recipe = strategy(soup, url)
            except Exception as e:
                logger.debug(f"{method.value} extraction failed: {e}")
                continue
            if recipe is None:
                continue
            if not recipe.is_valid:
                logger.debug("%s extraction produced an incomplete recipe, trying next strategy", method.value)
                continue
            recipe.extraction_method = method
            recipe.source_url = url
            logger.info(f"Extracted '{recipe.name}' using {method.value}")
            return recipe
        logger.info(f"No extraction strategy produced a recipe for {url}")
        return None

    def extract_html(self, html: str, url: str) -> Optional[ParsedRecipe]:
        return self.extract(BeautifulSoup(html, "html.parser"), url)
