import pytest

from incidentwatch.classify import RULES, Rule, classify, match_rule, rule_hits


@pytest.mark.parametrize(
    "text, category, severity",
    [
        ("Armed group attacks checkpoint near border town", "terrorism", 5),
        ("Troops mobilizing along the northern frontier", "political_violence", 4),
        ("Thousands join protests outside parliament", "civil_unrest", 3),
        ("State outlets amplify propaganda about the ceasefire", "disinformation", 2),
        ("Viral fake election news spreads on social media", "disinformation", 2),
        ("Ministers meet to discuss grain exports", "social_media", 3),
    ],
)
def test_classify_categories(text, category, severity):
    c = classify(text)
    assert c.category == category
    assert c.severity == severity


def test_classify_is_case_insensitive():
    assert classify("BOMB found at central station").category == "terrorism"


def test_first_rule_in_priority_order_wins():
    """Text matching violence and escalation vocabulary is framed as the worse one."""
    text = "Armed militia threat escalates after attack on convoy"
    assert classify(text).category == "terrorism"
    assert [name for name, _ in rule_hits(text)] == ["violence", "escalation"]


def test_automated_confidence_is_fixed():
    assert {classify(t).confidence for t in ("riot in the square", "quiet day", "killed")} == {40}


def test_classify_is_deterministic():
    text = "Protesters clash with police, several killed"
    assert classify(text) == classify(text)


def test_custom_rules():
    rules = [Rule("cyber", lambda t: "ransomware" in t, "cyber", 4)]
    assert match_rule("Ransomware hits hospital", rules).name == "cyber"
    assert classify("Ransomware hits hospital", rules).category == "cyber"
    assert classify("Bomb threat", rules).category == "social_media"


def test_rule_order_is_stable():
    assert [r.name for r in RULES] == ["violence", "escalation", "unrest", "disinformation"]


def test_empty_text_falls_back_to_default():
    assert match_rule("") is None
    assert rule_hits(None) == []
    assert classify(None).category == "social_media"
