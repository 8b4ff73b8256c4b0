import logging

from tags import parse_tags, stringify_tags


def test_parse_tags_returns_string_list() -> None:
    assert parse_tags('["食費", "ランチ"]') == ["食費", "ランチ"]


def test_parse_tags_empty_values_are_none() -> None:
    assert parse_tags(None) is None
    assert parse_tags("") is None


def test_parse_tags_malformed_json_degrades_to_none(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tags"):
        assert parse_tags("not json", transaction_id=7) is None
    assert "tags_parse_failed" in caplog.text
    assert "transaction_id=7" in caplog.text


def test_parse_tags_non_list_degrades_to_none(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="tags"):
        assert parse_tags('{"a": 1}') is None
    assert "tags_not_a_list" in caplog.text


def test_parse_tags_drops_non_string_items() -> None:
    assert parse_tags('["a", 1, null, "b"]') == ["a", "b"]


def test_stringify_tags_keeps_duplicates_and_blanks() -> None:
    tags = ["b", "a", "b", " "]
    assert stringify_tags(tags) == '["b", "a", "b", " "]'
    assert parse_tags(stringify_tags(tags)) == tags


def test_stringify_tags_keeps_non_ascii_readable() -> None:
    assert stringify_tags(["外食"]) == '["外食"]'


def test_stringify_tags_empty_is_none() -> None:
    assert stringify_tags(None) is None
    assert stringify_tags([]) is None


def test_tags_survive_a_round_trip() -> None:
    tags = ["食費", "外食", "友人"]
    assert parse_tags(stringify_tags(tags)) == tags
