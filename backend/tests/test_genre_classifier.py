"""
Unit tests for genre classification from subject/type metadata.
"""

from smartreader.services.epub.genre_classifier import (
    clean_genre_token,
    extract_genre,
    genre_candidates,
    normalize_genre_label,
)


class TestNormalizeGenreLabel:
    """Test rule ordering and the title-case fallback"""

    def test_historical_fiction_is_historical(self):
        assert normalize_genre_label("Historical Fiction") == "Historical"

    def test_sci_fi_variants(self):
        assert normalize_genre_label("Sci-Fi Adventure") == "Science Fiction"
        assert normalize_genre_label("scifi") == "Science Fiction"
        assert normalize_genre_label("SCIENCE FICTION") == "Science Fiction"

    def test_nonfiction_before_fiction(self):
        assert normalize_genre_label("Non-Fiction") == "Nonfiction"
        assert normalize_genre_label("Literary fiction") == "Fiction"

    def test_play_and_plays(self):
        assert normalize_genre_label("Plays") == "Drama"

    def test_title_case_fallback(self):
        assert normalize_genre_label("young adult") == "Young Adult"
        assert normalize_genre_label("sf") == "SF"

    def test_empty(self):
        assert normalize_genre_label("   ") == ""
        assert normalize_genre_label(None) == ""


class TestGenreCandidates:
    """Test candidate collection across metadata shapes"""

    def test_clean_token_strips_markup(self):
        assert clean_genre_token("A&nbsp;<i>b</i>") == "A b"

    def test_split_on_separators(self):
        metadata = {"subject": "Adventure; Fantasy | Magic/Quests, Maps"}
        assert genre_candidates(metadata) == ["Adventure", "Fantasy", "Magic", "Quests", "Maps"]

    def test_nested_values(self):
        metadata = {"subjects": [{"value": "Horror"}, ["Mystery"]]}
        assert genre_candidates(metadata) == ["Horror", "Mystery"]

    def test_source_key_priority(self):
        metadata = {"type": "Poetry", "genre": "Romance"}
        assert genre_candidates(metadata) == ["Romance", "Poetry"]

    def test_non_string_values_ignored(self):
        assert genre_candidates({"subject": 42, "tags": None}) == []


class TestExtractGenre:
    """Test first-classifiable-candidate selection"""

    def test_first_candidate_wins(self):
        assert extract_genre({"subject": "Adventure; Fantasy"}) == "Adventure"

    def test_markup_in_subjects(self):
        assert extract_genre({"genre": "", "subjects": ["<b>Mystery</b>"]}) == "Mystery"

    def test_missing_metadata(self):
        assert extract_genre({}) == ""
        assert extract_genre(None) == ""
