import pytest

from remedy.layers.sense.similarity import best_matches, is_similar, levenshtein_distance, similarity


@pytest.mark.parametrize("value", ["a", "email", "user_email", "送信する"])
def test_similarity_identity(value):
    """A string is always fully similar to itself."""
    assert similarity(value, value) == 1.0


@pytest.mark.parametrize("a,b", [
    ("user-email", "user_email"),
    ("submit", "sbumit"),
    ("name", "contact_name"),
    ("", "abc"),
])
def test_similarity_symmetric_and_bounded(a, b):
    assert similarity(a, b) == similarity(b, a)
    assert 0.0 <= similarity(a, b) <= 1.0


def test_similarity_name_variant():
    """One substitution over ten characters scores 0.9."""
    assert levenshtein_distance("user-email", "user_email") == 1
    assert similarity("user-email", "user_email") == pytest.approx(0.9)


def test_similarity_case_insensitive():
    assert similarity("Email", "EMAIL") == 1.0


def test_similarity_empty_strings():
    assert similarity("", "") == 1.0
    assert similarity("", "x") == 0.0


def test_is_similar_threshold():
    assert is_similar("user-email", "user_email")
    assert not is_similar("email", "telephone")


def test_best_matches_ranks_and_filters():
    matches = best_matches("user_email", ["user-email", "address", "user_mail", "user-email"])
    assert [m for m, _ in matches] == ["user-email", "user_mail"]
    assert matches[0][1] >= matches[1][1]
