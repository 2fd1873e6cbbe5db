from persona_agent.domain.context.parsing import (
    add_header,
    compose_context,
    parse_boolean_from_text,
    parse_json_array_from_text,
    parse_json_object_from_text,
    parse_should_respond_from_text,
)


def test_should_respond_reads_bracketed_first_line():
    assert parse_should_respond_from_text("[RESPOND]") == "RESPOND"
    assert parse_should_respond_from_text("stop\nbecause the user said goodbye") == "STOP"


def test_should_respond_searches_body_and_rejects_noise():
    assert parse_should_respond_from_text("I think Eliza should IGNORE this") == "IGNORE"
    assert parse_should_respond_from_text("maybe later") is None


def test_boolean_parsing():
    assert parse_boolean_from_text(" yes ") is True
    assert parse_boolean_from_text("No") is False
    assert parse_boolean_from_text("perhaps") is None


def test_json_array_from_fenced_block_and_inline_span():
    assert parse_json_array_from_text('```json\n["a", "b"]\n```') == ["a", "b"]
    assert parse_json_array_from_text('Here you go: [ {"a": 1} ] done') == [{"a": 1}]
    assert parse_json_array_from_text("nothing to see") is None


def test_json_object_parsing():
    reply = '```json\n{"user": "Eliza", "text": "hi", "action": "NONE"}\n```'
    assert parse_json_object_from_text(reply) == {"user": "Eliza", "text": "hi", "action": "NONE"}
    assert parse_json_object_from_text('prefix {"a": 1} suffix') == {"a": 1}


def test_json_object_hands_fenced_arrays_to_array_parser():
    assert parse_json_object_from_text('```json\n["x", "y"]\n```') == ["x", "y"]


def test_malformed_json_yields_none():
    assert parse_json_object_from_text("```json\n{not json}\n```") is None


def test_compose_context_blanks_unknown_and_none_keys():
    state = {"agentName": "Eliza", "empty": None, "count": 3}
    template = "Hi {{agentName}} {{missing}}{{empty}}! {{count}}"
    assert compose_context(state, template) == "Hi Eliza ! 3"


def test_add_header():
    assert add_header("# Actors", "") == ""
    assert add_header("# Actors", "Eliza") == "# Actors\nEliza\n"
