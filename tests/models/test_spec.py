"""Tests for input value parsing."""

from __future__ import annotations

import pytest

from srcvault.errors import SpecParseError
from srcvault.models.spec import DEFAULT_REF, RepositorySpec, is_numeric, parse_input_value


class TestParseInputValue:
    """Tests for parse_input_value."""

    def test_uri_only_defaults_to_master(self):
        spec = parse_input_value("https://example.org/repo.git")

        assert spec.uri == "https://example.org/repo.git"
        assert spec.ref == DEFAULT_REF == "master"
        assert spec.deep_clone is False
        assert spec.timeout is None
        assert spec.options == {}

    def test_uri_and_ref(self):
        spec = parse_input_value("git@example.org:team/repo.git release-2.1")

        assert spec.uri == "git@example.org:team/repo.git"
        assert spec.ref == "release-2.1"

    def test_third_token_sets_deep_clone(self):
        spec = parse_input_value("https://example.org/repo.git master deepClone")
        assert spec.deep_clone is True
        assert spec.timeout is None

    def test_numeric_third_token_is_timeout(self):
        spec = parse_input_value("https://example.org/repo.git release 400")

        assert spec.ref == "release"
        assert spec.timeout == 400
        assert spec.deep_clone is False

    def test_options_tail(self):
        spec = parse_input_value(
            "https://example.org/repo.git main timeout=900 cache_period=60 label=a=b"
        )

        assert spec.ref == "main"
        assert spec.options == {"timeout": "900", "cache_period": "60", "label": "a=b"}

    def test_options_may_follow_uri_directly(self):
        spec = parse_input_value("https://example.org/repo.git timeout=30")

        assert spec.ref == "master"
        assert spec.options == {"timeout": "30"}

    def test_duplicate_option_last_wins(self):
        spec = parse_input_value("https://example.org/repo.git master a=1 a=2")
        assert spec.options == {"a": "2"}

    def test_extra_whitespace_is_ignored(self):
        spec = parse_input_value("  https://example.org/repo.git \t  dev  ")
        assert spec.uri == "https://example.org/repo.git"
        assert spec.ref == "dev"

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "   ",
            "timeout=5",
            "https://example.org/repo.git master deepClone stray",
            "https://example.org/repo.git master a=1 stray",
            "https://example.org/repo.git master =value",
        ],
    )
    def test_malformed_values(self, value):
        with pytest.raises(SpecParseError):
            parse_input_value(value)

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_input_value("")


class TestRepositorySpec:
    """Tests for RepositorySpec."""

    def test_round_trip_keeps_uri_and_ref(self):
        original = "https://example.org/repo.git feature/x"
        spec = parse_input_value(original)

        again = parse_input_value(spec.to_value())

        assert again.uri == spec.uri
        assert again.ref == spec.ref

    def test_to_value_includes_flags_and_options(self):
        spec = RepositorySpec(
            uri="https://example.org/repo.git",
            ref="dev",
            deep_clone=True,
            options={"cache_period": "60"},
        )
        assert spec.to_value() == "https://example.org/repo.git dev deepClone cache_period=60"

    def test_frozen(self):
        spec = parse_input_value("https://example.org/repo.git")
        with pytest.raises(Exception):
            spec.ref = "other"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("400", True), ("-1", True), ("+7", True), ("4.5", False), ("abc", False), ("", False)],
)
def test_is_numeric(value, expected):
    assert is_numeric(value) is expected
