from utils.text import clean_text, dedupe_casefold, slugify


def test_slugify_strips_accents_and_punctuation():
    assert slugify("  Pokémon: Adventures!  ") == "pokemon-adventures"
    assert slugify("Frieren's Journey") == "frierens-journey"


def test_slugify_returns_empty_string_when_nothing_ascii_is_left():
    assert slugify("進撃の巨人") == ""
    assert slugify(None) == ""


def test_clean_text_collapses_whitespace():
    assert clean_text("a \n  b\t") == "a b"
    assert clean_text(42) == ""


def test_dedupe_casefold_keeps_first_spelling():
    assert dedupe_casefold(["Action", "action", " ", "Drama", "ACTION"]) == ["Action", "Drama"]
