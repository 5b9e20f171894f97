import pytest

from logic.rate_limiter import DomainRateLimiter
from logic.renderer import RenderedPage
from logic.rules_loader import SiteRuleRegistry, load_rules


CHICKEN_STIR_FRY_HTML = """
<html>
<head>
  <title>Chicken Stir Fry | Example Kitchen</title>
  <meta name="description" content="A quick weeknight stir fry.">
  <meta property="og:site_name" content="Example Kitchen">
  <link rel="icon" href="/favicon.ico">
  <script type="application/ld+json">
  {"@type":"Recipe","name":"Chicken Stir Fry","recipeIngredient":["1 lb chicken","2 peppers"],
   "recipeInstructions":[{"text":"Cook chicken"},{"text":"Add peppers"}],"prepTime":"PT20M"}
  </script>
</head>
<body>
  <div class="recipe-image"><img src="/images/stir-fry-1200.jpg" alt="Chicken stir fry in a wok"></div>
</body>
</html>
"""

NO_RECIPE_HTML = "<html><head><title>About us</title></head><body><h1>About our company</h1></body></html>"


class FakeRenderer:
    """Stands in for BrowserRenderer; plays back HTML strings or raises exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses) or [NO_RECIPE_HTML]
        self.calls = []
        self.start_error = None
        self.started = 0
        self.stopped = 0

    async def render(self, url):
        self.calls.append(url)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return RenderedPage(html=response, final_url=url)

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.started += 1

    async def stop(self):
        self.stopped += 1


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def registry():
    return SiteRuleRegistry.from_dict(load_rules())


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def fast_rate_limiter():
    """Per-origin limiters with the start delay removed for the test origins."""
    limiter = DomainRateLimiter(wake_delay=0)
    for domain in ("example.com", "allrecipes.com"):
        limiter.get_limiter(domain).update_config(min_delay=0)
    return limiter
