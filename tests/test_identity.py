"""Tests for identity resolution."""

import pytest

from outreach_sync.sync.identity import (
    MissingIdentity,
    candidate_key,
    name_similarity,
    normalize_email,
    normalize_profile_url,
    same_company,
)
from outreach_sync.sync.models import ContactCandidate, SourceTag


def candidate(**fields):
    return ContactCandidate(source=fields.pop("source", SourceTag.CSV), **fields)


class TestNormalizeEmail:
    """Tests for normalize_email."""

    def test_trims_and_lowercases(self):
        assert normalize_email("  A@X.com ") == "a@x.com"

    @pytest.mark.parametrize("value", ["", None, "no-at-sign", "@x.com", "a@", "a@b@c"])
    def test_unusable_values(self, value):
        assert normalize_email(value) == ""

    def test_inner_space_is_unusable(self):
        assert normalize_email("jane doe@x.com") == ""


class TestNormalizeProfileUrl:
    """Tests for normalize_profile_url."""

    def test_strips_query_fragment_and_slash(self):
        assert (
            normalize_profile_url("https://example.com/in/jane/?trk=abc#top")
            == "https://example.com/in/jane"
        )

    def test_lowercases_host_and_drops_www(self):
        assert (
            normalize_profile_url("HTTPS://WWW.Example.COM/in/Jane")
            == "https://example.com/in/Jane"
        )

    def test_adds_scheme(self):
        assert normalize_profile_url("example.com/in/jane") == "https://example.com/in/jane"

    def test_empty(self):
        assert normalize_profile_url("   ") == ""
        assert normalize_profile_url(None) == ""

    def test_bad_port_is_unusable(self):
        assert normalize_profile_url("https://example.com:notaport/in/x") == ""


class TestCandidateKey:
    """Tests for candidate_key."""

    def test_email_wins(self):
        key = candidate_key(
            candidate(email="Jane@X.com", profile_url="https://example.com/in/jane")
        )
        assert key == "email:jane@x.com"

    def test_url_fallback(self):
        key = candidate_key(candidate(profile_url="https://example.com/in/jane/"))
        assert key == "url:https://example.com/in/jane"

    def test_invalid_email_falls_back_to_url(self):
        key = candidate_key(
            candidate(email="not-an-email", profile_url="example.com/in/jane")
        )
        assert key == "url:https://example.com/in/jane"

    def test_equivalent_inputs_share_a_key(self):
        a = candidate(email=" JANE@x.com")
        b = candidate(email="jane@X.COM ", source=SourceTag.PRIMARY_API)
        assert candidate_key(a) == candidate_key(b)

    def test_missing_identity(self):
        with pytest.raises(MissingIdentity, match="row 7"):
            candidate_key(candidate(name="Jane Doe", origin="row 7"))


class TestNameSimilarity:
    """Tests for name_similarity and same_company."""

    def test_word_order_and_accents_ignored(self):
        assert name_similarity("Doe, José", "Jose Doe") == 1.0

    def test_close_names(self):
        assert name_similarity("Jon Smith", "John Smith") >= 0.9

    def test_different_names(self):
        assert name_similarity("Ann Lee", "Robert Brown") < 0.5

    def test_empty_names_never_match(self):
        assert name_similarity("", "Jane") == 0.0
        assert name_similarity(None, None) == 0.0

    def test_same_company(self):
        assert same_company("Acme, Inc.", "acme inc")
        assert not same_company("Acme", "Globex")
        assert not same_company("", "")
