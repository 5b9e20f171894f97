import logging
import random
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
    # Chrome on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    # Firefox on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:125.0) Gecko/20100101 Firefox/125.0",
    # Safari on macOS
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.3 Safari/605.1.15",
    # Chrome on Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    # Edge on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36 Edg/123.0.0.0",
]

VIEWPORTS = [
    (1920, 1080),
    (1366, 768),
    (1440, 900),
    (1536, 864),
    (1280, 720),
    (1600, 900),
    (2560, 1440),
]


@dataclass(frozen=True)
class ClientIdentity:
    user_agent: str
    viewport: Tuple[int, int]

    @property
    def viewport_size(self) -> Dict[str, int]:
        width, height = self.viewport
        return {"width": width, "height": height}


class UserAgentRotator:
    """Hands out randomized browser identities for rendering attempts.

    The same user agent is never issued twice in a row while the pool holds
    more than one entry.
    """

    def __init__(self, user_agents: Optional[Sequence[str]] = None,
                 viewports: Optional[Sequence[Tuple[int, int]]] = None,
                 rng: Optional[random.Random] = None):
        self.user_agents: List[str] = list(USER_AGENTS if user_agents is None else user_agents)
        self.viewports: List[Tuple[int, int]] = list(VIEWPORTS if viewports is None else viewports)
        if not self.user_agents or not self.viewports:
            raise ValueError("user agent and viewport pools must not be empty")
        self._rng = rng or random.Random()
        self._last_index = -1

    def next(self) -> ClientIdentity:
        return ClientIdentity(user_agent=self.random_user_agent(), viewport=self.random_viewport())

    def random_user_agent(self) -> str:
        if len(self.user_agents) == 1:
            index = 0
        else:
            # Draw from the pool minus the last issued entry
            index = self._rng.randrange(len(self.user_agents) - 1 if self._last_index >= 0 else len(self.user_agents))
            if 0 <= self._last_index <= index:
                index += 1
        self._last_index = index
        user_agent = self.user_agents[index]
        logger.debug("Selected user agent #%d: %s...", index, user_agent[:50])
        return user_agent

    def random_viewport(self) -> Tuple[int, int]:
        viewport = self._rng.choice(self.viewports)
        logger.debug("Selected viewport: %sx%s", *viewport)
        return viewport

    @staticmethod
    def browser_type(user_agent: str) -> str:
        if "Edg" in user_agent:
            return "edge"
        if "Chrome" in user_agent:
            return "chrome"
        if "Firefox" in user_agent:
            return "firefox"
        if "Safari" in user_agent:
            return "safari"
        return "unknown"

    @staticmethod
    def os_type(user_agent: str) -> str:
        if "Windows" in user_agent:
            return "windows"
        if "Macintosh" in user_agent:
            return "macos"
        if "Linux" in user_agent:
            return "linux"
        return "unknown"

    def stats(self) -> dict:
        browsers: Dict[str, int] = {}
        systems: Dict[str, int] = {}
        for ua in self.user_agents:
            browser = self.browser_type(ua)
            system = self.os_type(ua)
            browsers[browser] = browsers.get(browser, 0) + 1
            systems[system] = systems.get(system, 0) + 1
        return {
            "total_user_agents": len(self.user_agents),
            "browsers": browsers,
            "operating_systems": systems,
        }
