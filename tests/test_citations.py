"""Tests for disclaimer collection and citation sanitising."""

from agents_hub.services.citations import (
    CITATIONS_UNAVAILABLE,
    FALLBACK_CITATION,
    DisclaimerSet,
    sanitise_citations,
)


class TestDisclaimerSet:
    def test_trims_and_dedupes_in_order(self):
        disclaimers = DisclaimerSet()

        disclaimers.add("  Wine withheld.  ")
        disclaimers.extend(["Wine withheld.", None, "", "Prices include VAT."])

        assert disclaimers.to_list() == ["Wine withheld.", "Prices include VAT."]
        assert len(disclaimers) == 2
        assert "Prices include VAT." in disclaimers


class TestSanitiseCitations:
    """Tests for sanitise_citations."""

    def test_keeps_allowed_prefixes_in_order(self):
        disclaimers = DisclaimerSet()

        result = sanitise_citations(
            ["menu:abc", "https://example.com", "allergens:policy", "policies:ops", "kb:42"],
            disclaimers,
        )

        assert result == ["menu:abc", "allergens:policy", "policies:ops"]
        assert len(disclaimers) == 0

    def test_falls_back_when_nothing_survives(self):
        disclaimers = DisclaimerSet()

        result = sanitise_citations(["source: trust me", 42], disclaimers)

        assert result == [FALLBACK_CITATION]
        assert disclaimers.to_list() == [CITATIONS_UNAVAILABLE]

    def test_empty_input_falls_back(self):
        disclaimers = DisclaimerSet()

        assert sanitise_citations([], disclaimers) == ["policies:ops"]
        assert CITATIONS_UNAVAILABLE in disclaimers
