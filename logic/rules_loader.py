import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from core.config import settings
from models.types import SiteRule, SiteRuleSummary

logger = logging.getLogger(__name__)


@lru_cache(maxsize=4)
def load_rules(path: Optional[Path] = None) -> dict:
    path = Path(path or settings.site_rules_path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
            logger.info("Loaded site rules (%s)", path)
            return data
    except Exception as e:
        logger.warning("Failed to load site rules from %s: %s", path, e)
        return {}


def normalize_domain(host: str) -> str:
    host = (host or "").strip().lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


class SiteRuleRegistry:
    """Ordered, read-only collection of per-domain extraction rules."""

    def __init__(self, rules: Iterable[SiteRule], extra_domains: Iterable[str] = (),
                 parsing_methods: Iterable[str] = ()):
        self._rules: Tuple[SiteRule, ...] = tuple(rules)
        self._extra_domains: Tuple[str, ...] = tuple(normalize_domain(d) for d in extra_domains)
        self.parsing_methods: Tuple[str, ...] = tuple(parsing_methods)

    @classmethod
    def from_dict(cls, data: dict) -> "SiteRuleRegistry":
        rules = []
        for raw in data.get("sites") or []:
            try:
                rules.append(SiteRule(**raw))
            except (ValidationError, TypeError) as e:
                logger.warning("Skipping invalid site rule %r: %s", raw.get("name") if isinstance(raw, dict) else raw, e)
        return cls(
            rules,
            extra_domains=data.get("additional_supported_domains") or [],
            parsing_methods=data.get("parsing_methods") or [],
        )

    @property
    def rules(self) -> Tuple[SiteRule, ...]:
        return self._rules

    def find(self, domain: str) -> Optional[SiteRule]:
        domain = normalize_domain(domain)
        if not domain:
            return None
        for rule in self._rules:
            if rule.matches(domain):
                return rule
        return None

    def is_supported(self, domain: str) -> bool:
        domain = normalize_domain(domain)
        if self.find(domain):
            return True
        return any(domain == d or domain.endswith("." + d) for d in self._extra_domains)

    def summaries(self) -> List[SiteRuleSummary]:
        out = [
            SiteRuleSummary(name=rule.name, domain=rule.domains[0], features=list(rule.features), quality=rule.quality)
            for rule in self._rules if rule.domains
        ]
        out.append(SiteRuleSummary(
            name="Generic Recipe Sites",
            domain="various",
            features=["basic-parsing", "fallback-support"],
            quality="fair",
        ))
        return out


@lru_cache(maxsize=1)
def get_site_registry() -> SiteRuleRegistry:
    return SiteRuleRegistry.from_dict(load_rules())
