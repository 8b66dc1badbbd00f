"""
Tests for the regex pattern matcher used by the annotator.
"""

from com_blockether_linkscout.linking.internal.PatternMatcher import PatternHit, PatternMatcher, RegexPatternMatcher


class TestRegexPatternMatcher:
    """Test suite for RegexPatternMatcher."""

    def test_implements_protocol(self) -> None:
        """Test the matching seam."""
        assert isinstance(RegexPatternMatcher(), PatternMatcher)

    def test_order_terms_longest_first(self) -> None:
        """Test ordering and case-insensitive deduplication."""
        assert RegexPatternMatcher.order_terms(["york", "new york", "York", "new york city", ""]) == (
            "new york city",
            "new york",
            "york",
        )

    def test_longer_term_wins(self) -> None:
        """Test that the alternation prefers the longest term at a position."""
        hits = RegexPatternMatcher().find_all("New York City Hall", ["new york", "new york city"])

        assert hits == [PatternHit(0, 13, "New York City")]

    def test_matching_is_case_insensitive(self) -> None:
        """Test that the document casing is reported back."""
        hits = RegexPatternMatcher().find_all("PARIS and paris", ["Paris"])

        assert [h.text for h in hits] == ["PARIS", "paris"]

    def test_terms_match_whole_words_only(self) -> None:
        """Test word boundaries at both term edges."""
        hits = RegexPatternMatcher().find_all("Parisian Paris Parisa", ["paris"])

        assert hits == [PatternHit(9, 14, "Paris")]

    def test_special_characters_are_escaped(self) -> None:
        """Test that regex metacharacters in terms are literal."""
        hits = RegexPatternMatcher().find_all("C++ (language) and C", ["c++ (language)"])

        assert [h.text for h in hits] == ["C++ (language)"]

    def test_compiled_patterns_are_cached(self) -> None:
        """Test pattern reuse for the same term set and cache bound."""
        matcher = RegexPatternMatcher(max_cached_patterns=2)

        first = matcher.compile(["paris", "london"])
        assert matcher.compile(["london", "paris"]) is first

        matcher.compile(["berlin"])
        matcher.compile(["rome"])
        assert matcher.compile(["paris", "london"]) is not first

    def test_no_terms_no_hits(self) -> None:
        """Test empty inputs."""
        matcher = RegexPatternMatcher()

        assert matcher.find_all("Paris", []) == []
        assert matcher.find_all("", ["paris"]) == []

    def test_sharp_s_spelling_matches(self) -> None:
        """Test that a spelling with "ß" is kept apart from its case-folded form and matched."""
        matcher = RegexPatternMatcher()

        assert matcher.order_terms(["grossbritannien", "großbritannien"]) == ("grossbritannien", "großbritannien")
        assert matcher.find_all("nach Großbritannien", ["großbritannien"]) == [PatternHit(5, 19, "Großbritannien")]
