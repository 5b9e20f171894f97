import logging
import re
from typing import List, Optional, Set
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from models.types import ImageCandidate, ImageDimensions, ImageRole

logger = logging.getLogger(__name__)

MAX_IMAGES = 10
BASE_SCORE = 50

IMAGE_SELECTORS = [
    ".recipe-image img",
    ".recipe-photo img",
    ".hero-image img",
    ".featured-image img",
    ".recipe-header img",
    '[class*="recipe"] img',
    'img[src*="recipe"]',
    'img[alt*="recipe"]',
]

# 3-4 digit numbers in an image URL, e.g. "-1200x800.jpg" or "?w=960"
_RESOLUTION = re.compile(r"(?<!\d)(\d{3,4})(?!\d)")


def _classes(tag: Optional[Tag]) -> str:
    if tag is None:
        return ""
    value = tag.get("class") or []
    if isinstance(value, str):
        return value.lower()
    return " ".join(value).lower()


def image_source(img: Tag) -> Optional[str]:
    """The usable source of an <img>, falling back to lazy-load attributes."""
    src = (img.get("src") or "").strip()
    if src and not src.startswith("data:"):
        return src
    for attr in ("data-src", "data-lazy-src", "data-original"):
        value = (img.get(attr) or "").strip()
        if value:
            return value
    return None


def resolution_hint(url: str) -> int:
    """Largest pixel size hinted at by the URL, or 0."""
    best = 0
    for match in _RESOLUTION.finditer(url):
        value = int(match.group(1))
        before = url[match.start() - 1:match.start()].lower()
        after = url[match.end():match.end() + 1].lower()
        sized = before in ("x", "w", "=") or after in ("x", "w", "p")
        if 1990 <= value <= 2039 and not sized:
            # Upload paths like /2023/05/ are dates, not sizes
            continue
        best = max(best, value)
    return best


def classify_role(img: Tag, alt: str) -> ImageRole:
    parent_classes = _classes(img.parent)
    own_classes = _classes(img)
    alt = alt.lower()
    if "hero" in parent_classes or "hero" in own_classes:
        return ImageRole.HERO
    if "ingredient" in parent_classes or "ingredient" in alt:
        return ImageRole.INGREDIENT
    if "step" in parent_classes or "step" in alt:
        return ImageRole.STEP
    return ImageRole.GALLERY


def score_image(url: str, alt: str) -> int:
    score = BASE_SCORE
    parsed = urlparse(url.lower())
    path = parsed.path
    # Path and query only; the host is not part of the image name
    lowered = f"{path}?{parsed.query}" if parsed.query else path

    resolution = resolution_hint(lowered)
    if resolution >= 1200:
        score += 30
    elif resolution >= 800:
        score += 20
    elif resolution >= 600:
        score += 10

    if "high" in lowered or "hd" in lowered:
        score += 15
    if "thumb" in lowered or "small" in lowered:
        score -= 20

    if len(alt) > 10:
        score += 10
    if "recipe" in alt.lower() or "food" in alt.lower():
        score += 5

    if path.endswith(".webp"):
        score += 10
    elif path.endswith((".jpg", ".jpeg")):
        score += 5
    elif path.endswith(".png"):
        score += 3

    return max(0, min(100, score))


def _dimensions(img: Tag) -> Optional[ImageDimensions]:
    try:
        width = int(str(img.get("width", "")).strip().rstrip("px"))
        height = int(str(img.get("height", "")).strip().rstrip("px"))
    except ValueError:
        return None
    if width <= 0 or height <= 0:
        return None
    return ImageDimensions(width=width, height=height)


def extract_images(soup: BeautifulSoup, page_url: str, limit: int = MAX_IMAGES,
                   site_selector: Optional[str] = None) -> List[ImageCandidate]:
    """Collect, classify and rank candidate recipe images from a rendered page.

    ``site_selector`` comes from the matched site rule and is scanned first.
    """
    images: List[ImageCandidate] = []
    seen: Set[str] = set()
    selectors = ([site_selector] if site_selector else []) + IMAGE_SELECTORS

    for selector in selectors:
        for img in soup.select(selector):
            src = image_source(img)
            if not src:
                continue
            absolute_url = urljoin(page_url, src)
            if absolute_url in seen:
                continue
            seen.add(absolute_url)

            alt = (img.get("alt") or "").strip()
            images.append(ImageCandidate(
                url=absolute_url,
                role=classify_role(img, alt),
                alt_text=alt,
                quality_score=score_image(absolute_url, alt),
                dimensions=_dimensions(img),
            ))

    images.sort(key=lambda image: image.quality_score, reverse=True)
    logger.debug(f"Found {len(images)} candidate images on {page_url}")
    return images[:limit]
