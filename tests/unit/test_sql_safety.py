"""
Unit tests for identifier validation and quoting.

Table and column names end up in generated DDL, so anything that is not a
plain identifier must be rejected before it reaches a statement.
"""

import pytest

from sync_utils.sql_safety import (
    MAX_IDENTIFIER_LENGTH,
    quote_identifier,
    require_known_identifier,
    validate_identifier,
    validate_integer_param,
)


class TestValidateIdentifier:

    @pytest.mark.parametrize("name", ["Item", "ItemType", "_private", "xsync_Item_tracking", "T1"])
    def test_valid_identifiers(self, name):
        validate_identifier(name)

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "1Item",
            "Item; DROP TABLE Item",
            "Item]",
            "Item--",
            "dbo.Item",
            "Item Type",
            "Itém",
        ],
    )
    def test_invalid_identifiers(self, name):
        with pytest.raises(ValueError):
            validate_identifier(name)

    def test_length_limit(self):
        validate_identifier("a" * MAX_IDENTIFIER_LENGTH)
        with pytest.raises(ValueError, match="limited"):
            validate_identifier("a" * (MAX_IDENTIFIER_LENGTH + 1))


class TestQuoting:

    def test_quote_identifier_uses_brackets(self):
        assert quote_identifier("Item") == "[Item]"

    def test_quote_identifier_rejects_injection(self):
        with pytest.raises(ValueError):
            quote_identifier("Item] ; DROP TABLE [Item")


class TestRequireKnownIdentifier:

    def test_returns_catalog_spelling(self):
        assert require_known_identifier("itemtype", ["Item", "ItemType"], "table") == "ItemType"

    def test_unknown_identifier(self):
        with pytest.raises(ValueError, match="Unknown table"):
            require_known_identifier("Orders", ["Item", "ItemType"], "table")

    def test_malformed_identifier_rejected_before_lookup(self):
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            require_known_identifier("Item;--", ["Item;--"], "table")


class TestValidateIntegerParam:

    def test_accepts_integers_at_or_above_minimum(self):
        validate_integer_param(1000, "local_pk_start", min_value=1)

    @pytest.mark.parametrize("value", ["1000", 10.5, None, True])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValueError, match="Must be an integer"):
            validate_integer_param(value, "local_pk_start")

    def test_rejects_below_minimum(self):
        with pytest.raises(ValueError, match=">= 1"):
            validate_integer_param(0, "local_pk_start", min_value=1)
