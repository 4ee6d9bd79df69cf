import pytest

from newsrelay.categories import DEFAULT_CATEGORY, classify


def test_startup_funding_beats_finance_and_technology():
    assert classify("Startup raises $10M in new funding round", "") == "Business"


@pytest.mark.parametrize(
    "title,expected",
    [
        ("New AI model beats benchmarks", "Technology"),
        ("Stock market rallies on rate cut", "Finance"),
        ("Climate summit ends without deal", "Environment"),
        ("Senate passes new election law", "Politics"),
        ("Football club wins the tournament", "Sports"),
        ("Vaccine trial shows strong results", "Health"),
        ("NASA confirms water on distant moon", "Science"),
        ("Actress wins best film award", "Entertainment"),
        ("Company announces record quarter", "Business"),
        ("United Nations convenes emergency session", "World"),
    ],
)
def test_first_matching_rule_wins(title, expected):
    assert classify(title, None) == expected


def test_description_is_considered():
    assert classify("Weekend recap", "the cricket season opens") == "Sports"


def test_no_match_defaults_to_general():
    assert classify("Local bakery opens", "") == DEFAULT_CATEGORY
    assert classify(None, None) == DEFAULT_CATEGORY


def test_keywords_do_not_match_inside_words():
    # "said" must not trip the "ai" keyword
    assert classify("Mayor said nothing", "") == DEFAULT_CATEGORY


def test_classification_is_deterministic():
    title = "Tech giant faces antitrust lawsuit"
    assert {classify(title, "") for _ in range(5)} == {"Technology"}
