"""Tests for backend selection."""

import pytest

from image_broker.errors import ValidationError
from image_broker.routing import (
    DEFAULT_CHAIN,
    Category,
    MatchMode,
    SelectionEngine,
    SelectionPolicy,
    keyword_matches,
)

ALL_BACKENDS = list(DEFAULT_CHAIN)


class TestKeywordMatching:
    """Tests for keyword_matches."""

    def test_word_mode(self) -> None:
        """Test that keywords must start at a word boundary."""
        assert keyword_matches("abstract art", "art", MatchMode.WORD)
        assert keyword_matches("artwork of a cat", "art", MatchMode.WORD)
        assert not keyword_matches("start the engine", "art", MatchMode.WORD)
        assert keyword_matches("remove background please", "remove background", MatchMode.WORD)

    def test_substring_mode(self) -> None:
        """Test plain containment, the default."""
        assert keyword_matches("start the engine", "art")
        assert keyword_matches("a startup office at dusk", "art", MatchMode.SUBSTRING)
        assert not keyword_matches("a cat on a sofa", "art")


class TestClassification:
    """Tests for prompt classification."""

    def test_logo_with_text(self) -> None:
        """Test the logo/text tie goes to the earlier category."""
        engine = SelectionEngine()
        scores = {s.category: s for s in engine.score_all("logo with text 'Acme'")}
        assert set(scores) == {"logo", "text-heavy"}
        assert scores["logo"].score == scores["text-heavy"].score == 4

        best = engine.classify("logo with text 'Acme'")
        assert best is not None
        assert best.category == "logo"
        assert best.matched_keywords == ("logo",)
        assert best.backend == "ideogram"

    def test_quick_draft(self) -> None:
        """Test score and confidence of a two-keyword match."""
        best = SelectionEngine().classify("quick draft sketch")
        assert best is not None
        assert best.category == "quick-draft"
        assert best.score == len("quick") + len("draft")
        assert best.confidence == pytest.approx(0.9 * (0.5 + 0.5 * 2 / 6))

    def test_longer_keywords_win(self) -> None:
        """Test that the raw score weighs keyword length."""
        best = SelectionEngine().classify("a typography poster")
        assert best is not None
        assert best.category == "text-heavy"

    def test_no_match(self) -> None:
        """Test a prompt with no category keywords."""
        assert SelectionEngine().classify("a cat on a sofa") is None

    def test_substring_match_inside_word(self) -> None:
        """Test that a keyword inside a longer word still classifies the prompt."""
        best = SelectionEngine().classify("a startup office at dusk")
        assert best is not None
        assert best.category == "artistic"
        assert best.matched_keywords == ("art",)

    def test_match_mode_from_policy(self) -> None:
        """Test that word mode is an opt-in policy option."""
        engine = SelectionEngine(SelectionPolicy(match_mode=MatchMode.WORD))
        assert engine.classify("a startup office at dusk") is None
        best = engine.classify("abstract art")
        assert best is not None
        assert best.category == "artistic"

    def test_tie_break_by_declaration_order(self) -> None:
        """Test that ties go to the category declared first."""
        first = Category("first", ("xx",), ("a",))
        second = Category("second", ("yy",), ("b",))
        best = SelectionEngine(SelectionPolicy(categories=(first, second))).classify("xx yy")
        assert best is not None
        assert best.category == "first"
        best = SelectionEngine(SelectionPolicy(categories=(second, first))).classify("xx yy")
        assert best is not None
        assert best.category == "second"


class TestCandidates:
    """Tests for candidate ordering."""

    def test_logo_prefers_ideogram(self) -> None:
        """Test a matched category yields its preferred then fallback backends."""
        candidates = SelectionEngine().candidates("logo with text 'Acme'", ALL_BACKENDS)
        assert candidates == ["ideogram", "openai", "recraft", "stability"]

    def test_quick_draft_prefers_fal(self) -> None:
        """Test the quick-draft category."""
        candidates = SelectionEngine().candidates("quick draft sketch", ALL_BACKENDS)
        assert candidates == ["fal", "openai", "gemini"]

    def test_category_filtered_by_availability(self) -> None:
        """Test that unavailable backends are dropped."""
        candidates = SelectionEngine().candidates("logo for a bakery", ["stability", "openai", "mock"])
        assert candidates == ["openai", "stability"]

    def test_category_without_available_backends(self) -> None:
        """Test the default chain when no category backend is available."""
        candidates = SelectionEngine().candidates("logo for a bakery", ["mock", "fal"])
        assert candidates == ["fal", "mock"]

    def test_no_match_uses_default_chain(self) -> None:
        """Test the static priority order."""
        candidates = SelectionEngine().candidates("a cat on a sofa", ["mock", "fal", "openai"])
        assert candidates == ["openai", "fal", "mock"]

    def test_quality_heuristic(self) -> None:
        """Test that quality phrases promote quality backends."""
        candidates = SelectionEngine().candidates("a 4k cat on a sofa", ["mock", "openai", "bfl"])
        assert candidates == ["bfl", "openai", "mock"]

    def test_unknown_backends_last(self) -> None:
        """Test that backends outside the chain are still candidates."""
        candidates = SelectionEngine().candidates("a cat on a sofa", ["custom", "openai"])
        assert candidates == ["openai", "custom"]

    def test_default_backend_without_category(self) -> None:
        """Test that the default backend leads only when no category matches."""
        engine = SelectionEngine()
        available = ["openai", "ideogram", "fal"]
        assert engine.candidates("a cat on a sofa", available, default_backend="fal") == [
            "fal",
            "openai",
            "ideogram",
        ]
        assert engine.candidates("logo with text 'Acme'", available, default_backend="fal") == [
            "ideogram",
            "openai",
        ]
        assert engine.candidates("a 4k cat", ["openai", "bfl", "fal"], default_backend="fal") == [
            "bfl",
            "openai",
            "fal",
        ]

    def test_explicit_backend_first(self) -> None:
        """Test that an available explicit choice leads."""
        candidates = SelectionEngine().candidates("logo", ["openai", "ideogram", "fal"], "fal")
        assert candidates == ["fal", "ideogram", "openai"]

    def test_explicit_backend_unavailable(self) -> None:
        """Test that an unavailable explicit choice falls back to automatic order."""
        engine = SelectionEngine()
        auto = engine.candidates("logo", ["openai", "ideogram"])
        assert engine.candidates("logo", ["openai", "ideogram"], "bfl") == auto
        assert engine.candidates("logo", ["openai", "ideogram"], "auto") == auto

    def test_no_duplicates(self) -> None:
        """Test that every candidate appears once."""
        candidates = SelectionEngine().candidates(
            "high quality quick draft", ALL_BACKENDS, "openai"
        )
        assert len(candidates) == len(set(candidates))
        assert candidates[0] == "openai"

    def test_deterministic(self) -> None:
        """Test that ordering is independent of input order and repeatable."""
        policy = SelectionPolicy(categories=(Category("zap", ("zap",), ("b", "a")),))
        engine = SelectionEngine(policy)
        first = engine.candidates("zap it", ["a", "b", "c"])
        assert first == ["b", "a"]
        for available in (["c", "b", "a"], ["b", "c", "a"]):
            assert engine.candidates("zap it", available) == first


class TestRecommendations:
    """Tests for recommendations."""

    def test_category_recommendations(self) -> None:
        """Test a matched category."""
        recs = SelectionEngine().recommendations("logo with text 'Acme'")
        assert recs.primary == ["ideogram", "openai"]
        assert recs.secondary == ["recraft", "stability"]
        assert recs.category == "logo"
        assert "logo" in recs.reason

    def test_generic_recommendations(self) -> None:
        """Test the general-purpose fallback."""
        recs = SelectionEngine().recommendations("a cat on a sofa")
        assert recs.primary == ["openai", "stability", "bfl"]
        assert recs.category is None
        assert set(recs.to_dict()) == {"primary", "secondary", "reason"}


class TestSelectionPolicy:
    """Tests for SelectionPolicy data."""

    def test_invalid_categories(self) -> None:
        """Test category validation."""
        with pytest.raises(ValidationError):
            Category("empty", ())
        with pytest.raises(ValidationError):
            Category("bad", ("x",), base_confidence=1.5)
        with pytest.raises(ValidationError):
            SelectionPolicy(categories=(Category("a", ("x",)), Category("a", ("y",))))

    def test_from_yaml(self, tmp_path) -> None:
        """Test loading a policy table from YAML."""
        path = tmp_path / "policy.yaml"
        path.write_text(
            """
categories:
  sticker:
    keywords: [sticker, Decal]
    preferred: [Recraft]
    fallback: [openai]
    confidence: 0.7
speed:
  keywords: [asap]
  backends: [fal]
default_chain: [openai, mock]
match_mode: word
""",
            encoding="utf-8",
        )
        policy = SelectionPolicy.from_yaml(path)
        sticker = policy.category("sticker")
        assert sticker is not None
        assert sticker.keywords == ("sticker", "decal")
        assert sticker.preferred == ("recraft",)
        assert sticker.base_confidence == 0.7
        assert policy.default_chain == ("openai", "mock")
        assert policy.speed_backends == ("fal",)
        assert policy.quality_backends == ("bfl", "stability", "openai")
        assert policy.match_mode == MatchMode.WORD

        engine = SelectionEngine(policy)
        assert engine.candidates("a decal", ["openai", "recraft"]) == ["recraft", "openai"]

    def test_yaml_round_trip(self, tmp_path) -> None:
        """Test that the built-in table survives to_yaml/from_yaml."""
        path = tmp_path / "default.yaml"
        SelectionPolicy().to_yaml(path)
        assert SelectionPolicy.from_yaml(path) == SelectionPolicy()

    def test_invalid_yaml(self, tmp_path) -> None:
        """Test malformed policy documents."""
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            SelectionPolicy.from_yaml(path)

        path.write_text("match_mode: fuzzy\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            SelectionPolicy.from_yaml(path)

        path.write_text("categories: [a, b]\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            SelectionPolicy.from_yaml(path)
