"""Tests for the template token stream and reference rendering."""

import pytest

from arnab.engine.errors import TemplateSyntaxError
from arnab.engine.templating import (
    Expression,
    Literal,
    MacroInvocation,
    ModelReference,
    Name,
    Placeholder,
    PlainText,
    extract_references,
    render_reference,
    replace_references,
    tokenize,
)


def test_plain_text_only():
    assert tokenize("SELECT 1") == [PlainText("SELECT 1", 1)]


def test_reference_token():
    tokens = tokenize("SELECT * FROM {{ ref('staging.orders') }} o")
    assert tokens == [
        PlainText("SELECT * FROM ", 1),
        ModelReference(Literal("staging.orders"), 1),
        PlainText(" o", 1),
    ]
    assert tokens[1].identity == "staging.orders"


def test_double_quoted_reference():
    (token,) = [t for t in tokenize('{{ ref("orders") }}') if isinstance(t, ModelReference)]
    assert token.identity == "orders"


def test_reference_to_bare_name_has_no_identity():
    (token,) = tokenize("{{ ref(model) }}")
    assert token.target == Name("model")
    with pytest.raises(TemplateSyntaxError):
        token.identity


def test_macro_invocation_with_arguments():
    (token,) = tokenize("{{ cents(1, 'amount', scale=digits) }}")
    assert isinstance(token, MacroInvocation)
    assert token.name == "cents"
    assert token.args == (Literal(1), Literal("amount"))
    assert token.kwargs == (("scale", Name("digits")),)


def test_macro_invocation_without_arguments():
    (token,) = tokenize("{{ today() }}")
    assert token == MacroInvocation("today", (), (), 1)


def test_placeholder():
    (token,) = tokenize("{{ column }}")
    assert token == Placeholder("column", 1)


def test_other_expressions():
    (token,) = tokenize("{{ price * 2 }}")
    assert token == Expression("Mul", 1)


def test_tokens_record_lines():
    tokens = tokenize("SELECT *\nFROM {{ ref('a') }}\nWHERE {{ flag }}")
    assert [t.line for t in tokens if not isinstance(t, PlainText)] == [2, 3]


def test_templates_recognized_in_strings():
    tokens = tokenize("SELECT DATE '{{ day }}'")
    assert [type(t) for t in tokens] == [PlainText, Placeholder, PlainText]


def test_jinja_comments_are_dropped():
    tokens = tokenize("SELECT 1 {# {{ ref('a') }} #}")
    assert tokens == [PlainText("SELECT 1 ", 1)]


def test_comment_marker_in_string_is_not_a_comment():
    tokens = tokenize("SELECT '--' AS x, {{ ref('a') }}")
    assert any(isinstance(t, ModelReference) for t in tokens)


def test_apostrophe_in_quoted_identifier():
    sql = "SELECT v AS \"it's\"\nFROM {{ ref('a') }}"
    assert extract_references(sql) == ["a"]
    assert replace_references(sql, str.upper) == "SELECT v AS \"it's\"\nFROM A"


def test_unterminated_block():
    with pytest.raises(TemplateSyntaxError) as exc:
        tokenize("SELECT 1\nFROM {{ ref('a')")
    assert exc.value.line == 2
    assert exc.value.token == "FROM {{ ref('a')"


@pytest.mark.parametrize(
    "source",
    [
        "{{ }}",
        "{{ m(1 2) }}",
        "{{ m(a=1, 2) }}",
        "{{ m(a=) }}",
        "{{ ref('a', 'b') }}",
        "{{ ref() }}",
        "{{ ref(name='a') }}",
        "{% if %}x{% endif %}",
    ],
)
def test_malformed_blocks(source):
    with pytest.raises(TemplateSyntaxError):
        tokenize(source)


def test_extract_references_ordered_and_unique():
    sql = "SELECT * FROM {{ ref('b') }} JOIN {{ ref('a') }} USING (id) JOIN {{ ref('b') }} USING (id)"
    assert extract_references(sql) == ["b", "a"]


def test_extract_references_inside_blocks():
    sql = "{% if true %}SELECT * FROM {{ ref('a') }}{% endif %}"
    assert extract_references(sql) == ["a"]


def test_replace_references():
    sql = "SELECT * FROM {{ ref('staging.orders') }}\n"
    assert replace_references(sql, lambda name: name.upper()) == "SELECT * FROM STAGING.ORDERS\n"


def test_render_reference_round_trips():
    (token,) = tokenize(render_reference("staging.orders"))
    assert isinstance(token, ModelReference)
    assert token.identity == "staging.orders"
