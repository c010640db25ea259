import pytest

from coaching_engine.services.llm import ParsedJSON, ParseFailure, parse_llm_json, to_json_result


def test_parse_llm_json_valid() -> None:
    payload = parse_llm_json('{"ranked_ids":["a","b"]}')
    assert payload["ranked_ids"] == ["a", "b"]


def test_parse_llm_json_strips_surrounding_prose() -> None:
    payload = parse_llm_json('Here you go: {"ranked_ids": ["a"]} hope that helps')
    assert payload == {"ranked_ids": ["a"]}


def test_parse_llm_json_malformed_raises() -> None:
    with pytest.raises(ValueError):
        parse_llm_json('{"ranked_ids":["a",}')


def test_parse_llm_json_rejects_non_objects() -> None:
    with pytest.raises(ValueError):
        parse_llm_json('["a", "b"]')


def test_to_json_result_tags_failures() -> None:
    ok = to_json_result('{"a": 1}', model="m", tokens_used=5)
    bad = to_json_result("not json", model="m", tokens_used=5)

    assert isinstance(ok, ParsedJSON)
    assert ok.payload == {"a": 1}
    assert isinstance(bad, ParseFailure)
    assert bad.raw == "not json"
    assert bad.tokens_used == 5
