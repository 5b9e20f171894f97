from logic.rules_loader import SiteRuleRegistry, load_rules, normalize_domain


def test_rules_file_loads():
    rules = load_rules()
    assert {site["name"] for site in rules["sites"]} >= {"AllRecipes", "Food Network", "Tasty"}


def test_missing_rules_file_gives_empty_rules(tmp_path):
    assert load_rules(tmp_path / "missing.yaml") == {}


def test_domain_lookup_matches_subdomains(registry):
    assert registry.find("allrecipes.com").name == "AllRecipes"
    assert registry.find("www.allrecipes.com").name == "AllRecipes"
    assert registry.find("m.foodnetwork.com").name == "Food Network"
    assert registry.find("notallrecipes.com") is None
    assert registry.find("") is None


def test_supported_includes_structured_data_only_domains(registry):
    assert registry.is_supported("epicurious.com")
    assert registry.is_supported("www.tasty.co")
    assert not registry.is_supported("example.com")


def test_rule_selectors(registry):
    rule = registry.find("seriouseats.com")
    assert rule.selectors.ingredients == ".recipe-ingredient"
    assert rule.json_ld is True


def test_invalid_rules_are_skipped():
    registry = SiteRuleRegistry.from_dict({
        "sites": [
            {"name": "Broken"},
            {"name": "Good", "domains": ["good.example"], "selectors": {"title": "h1"}},
        ],
    })
    assert [rule.name for rule in registry.rules] == ["Good"]


def test_summaries_end_with_generic_entry(registry):
    summaries = registry.summaries()
    assert summaries[0].domain == "allrecipes.com"
    assert summaries[0].quality == "excellent"
    assert summaries[-1].name == "Generic Recipe Sites"


def test_normalize_domain():
    assert normalize_domain("WWW.BonAppetit.com.") == "bonappetit.com"
    assert normalize_domain(None) == ""
