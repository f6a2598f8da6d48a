import pytest

from automation_runner.services.expressions import eval_condition, resolve_path, substitute


def test_substitute_replaces_tokens_in_nested_config():
    config = {
        "to": "{{context.contact.email}}",
        "subject": "Hi {{context.name}}",
        "meta": {"tags": ["deal-{{context.deal.id}}", "static"]},
        "count": 3,
    }
    context = {"name": "Sam", "contact": {"email": "sam@example.com"}, "deal": {"id": 42}}

    out = substitute(config, context)

    assert out == {
        "to": "sam@example.com",
        "subject": "Hi Sam",
        "meta": {"tags": ["deal-42", "static"]},
        "count": 3,
    }
    # input left untouched
    assert config["subject"] == "Hi {{context.name}}"


def test_substitute_missing_and_null_values_become_empty_strings():
    out = substitute({"a": "[{{context.missing}}]", "b": "[{{context.none}}]"}, {"none": None})
    assert out == {"a": "[]", "b": "[]"}


def test_substitute_tolerates_whitespace_and_list_indexes():
    out = substitute("{{ context.items.1.sku }}", {"items": [{"sku": "A"}, {"sku": "B"}]})
    assert out == "B"


def test_substitute_keeps_quotes_inside_values_intact():
    out = substitute({"body": "said {{context.quote}}"}, {"quote": 'he said "hi"'})
    assert out == {"body": 'said he said "hi"'}


def test_substitute_is_idempotent_once_tokens_are_gone():
    config = {"subject": "Hi {{context.name}}", "lines": [{"qty": "{{context.qty}}"}]}
    context = {"name": "Sam", "qty": 2}

    once = substitute(config, context)
    assert substitute(once, context) == once


def test_resolve_path_returns_none_for_non_container():
    assert resolve_path({"a": 5}, "a.b") is None
    assert resolve_path({"a": {"b": False}}, "a.b") is False


@pytest.mark.parametrize(
    "expr, context, expected",
    [
        ("{{context.score}} > 50", {"score": 80}, True),
        ("{{context.score}} > 50", {"score": 10}, False),
        ('{{context.stage}} == "won"', {"stage": "won"}, True),
        ('{{context.stage}} != "won"', {"stage": "lost"}, True),
        ("{{context.a}} > 1 && {{context.b}} < 5", {"a": 2, "b": 3}, True),
        ("{{context.a}} > 1 && {{context.b}} < 5", {"a": 2, "b": 9}, False),
        ("{{context.a}} > 5 || {{context.b}} == 3", {"a": 2, "b": 3}, True),
        ("!({{context.flag}})", {"flag": False}, True),
        ("({{context.a}} + 2) * 3 >= 12", {"a": 2}, True),
        ("context.deal.amount >= 1000", {"deal": {"amount": 1500}}, True),
        ("{{context.missing}} == null", {}, True),
        ("true", {}, True),
        ("false || 0", {}, False),
        ("'single' === \"single\"", {}, True),
    ],
)
def test_eval_condition(expr, context, expected):
    assert eval_condition(expr, context) is expected


def test_eval_condition_quotes_strings_so_injection_stays_a_string():
    context = {"name": '" || true || "'}
    assert eval_condition('{{context.name}} == "bob"', context) is False


@pytest.mark.parametrize(
    "expr",
    [
        "__import__('os').system('echo hacked')",
        "{{context.score}} >",
        "(1 > 0",
        "1 > 0)",
        "@@@",
        "{{context.obj}} > 1",
        "{{context.missing}} > 1",
        "1 / 0",
        "process.exit()",
        "",
    ],
)
def test_eval_condition_never_raises_and_fails_closed(expr):
    assert eval_condition(expr, {"score": 5, "obj": {"a": 1}}) is False


def test_eval_condition_handles_non_string_expression():
    assert eval_condition(None, {}) is False
    assert eval_condition(1, {}) is True


@pytest.mark.parametrize(
    "expr, context, expected",
    [
        ("{{context.score}} > 50", {"score": "80"}, True),
        ("{{context.score}} <= 50", {"score": "80"}, False),
        ("{{context.score}} >= 50", {"score": " 50 "}, True),
        ("{{context.n}} == 1", {"n": "1"}, True),
        ("{{context.n}} != 1", {"n": "1"}, False),
        ("{{context.n}} === 1", {"n": "1"}, False),
        ("{{context.n}} !== 1", {"n": "1"}, True),
        ("{{context.n}} === 1", {"n": 1.0}, True),
        ("{{context.flag}} == 1", {"flag": True}, True),
        ("{{context.flag}} === 1", {"flag": True}, False),
        ("{{context.name}} > 5", {"name": "abc"}, False),
        ("{{context.name}} < 5", {"name": "abc"}, False),
        ("{{context.a}} > {{context.b}}", {"a": "b", "b": "a"}, True),
        ("{{context.a}} > {{context.b}}", {"a": "9", "b": "10"}, True),
        ("{{context.missing}} == 0", {}, False),
        ("{{context.missing}} < 1", {}, True),
    ],
)
def test_eval_condition_loose_comparisons_coerce_numeric_strings(expr, context, expected):
    assert eval_condition(expr, context) is expected


@pytest.mark.parametrize(
    "expr",
    [
        '"ab" * 3 == "ababab"',
        '"x" * 2000000000',
        '"a" + "b" == "ab"',
        "true + 1 == 2",
        '-"5" == -5',
        "{{context.tags}} + 1",
    ],
)
def test_eval_condition_arithmetic_only_on_numbers(expr):
    assert eval_condition(expr, {"tags": ["a"]}) is False
