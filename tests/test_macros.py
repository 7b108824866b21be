"""Tests for the macro registry and macro file loading."""

import textwrap

import pytest

from arnab.engine.errors import (
    DuplicateMacro,
    InvalidMacroDefinition,
    MacroArgumentError,
    MacroRecursionLimit,
    TemplateSyntaxError,
    UnknownMacro,
)
from arnab.engine.macros import MAX_MACRO_DEPTH, MacroRegistry, load_macros


@pytest.fixture
def registry():
    reg = MacroRegistry()
    reg.define("cents", ["col"], "{{ col }} / 100")
    reg.define("round_to", ["col", ("digits", 2)], "round({{ col }}, {{ digits }})")
    return reg


class TestDefine:
    def test_duplicate(self, registry):
        with pytest.raises(DuplicateMacro) as exc:
            registry.define("cents", ["x"], "{{ x }}")
        assert exc.value.name == "cents"

    def test_duplicate_keeps_first_definition(self, registry):
        with pytest.raises(DuplicateMacro):
            registry.define("cents", [], "0")
        assert registry.expand("{{ cents('a') }}") == "a / 100"

    def test_ref_is_reserved(self):
        with pytest.raises(ValueError):
            MacroRegistry().define("ref", ["name"], "{{ name }}")

    def test_invalid_name(self):
        with pytest.raises(ValueError):
            MacroRegistry().define("bad-name", [], "1")

    def test_duplicate_parameter(self):
        with pytest.raises(ValueError):
            MacroRegistry().define("m", ["a", "a"], "1")


class TestExpand:
    def test_no_macros(self, registry):
        assert registry.expand("SELECT 1") == "SELECT 1"

    def test_positional(self, registry):
        assert registry.expand("SELECT {{ cents('amount') }} FROM t") == "SELECT amount / 100 FROM t"

    def test_default_parameter(self, registry):
        assert registry.expand("{{ round_to('x') }}") == "round(x, 2)"

    def test_keyword_argument(self, registry):
        assert registry.expand("{{ round_to('x', digits=4) }}") == "round(x, 4)"
        assert registry.expand("{{ round_to(digits=0, col='y') }}") == "round(y, 0)"

    def test_nested_invocation_uses_bound_names(self):
        reg = MacroRegistry()
        reg.define("outer", ["c"], "{{ inner(c) }} + 1")
        reg.define("inner", ["c"], "abs({{ c }})")
        assert reg.expand("SELECT {{ outer('v') }}") == "SELECT abs(v) + 1"

    def test_reference_inside_macro(self):
        reg = MacroRegistry()
        reg.define("source", ["name"], "{{ ref(name) }}")
        assert reg.expand("SELECT * FROM {{ source('orders') }}") == "SELECT * FROM {{ ref('orders') }}"

    def test_references_are_kept(self, registry):
        sql = "SELECT * FROM {{ ref('orders') }}"
        assert registry.expand(sql) == sql

    def test_unbound_placeholder(self, registry):
        with pytest.raises(TemplateSyntaxError):
            registry.expand("SELECT {{ col }}")

    def test_fixed_point(self):
        reg = MacroRegistry()
        reg.define("a", ["x"], "{{ b(x) }} * {{ b('2') }}")
        reg.define("b", ["y"], "({{ y }} + 1)")
        text = "SELECT {{ a('v') }} FROM {{ ref('src') }} {# {{ not_a_macro() }} #}"
        once = reg.expand(text)
        assert once == "SELECT (v + 1) * (2 + 1) FROM {{ ref('src') }} "
        assert reg.expand(once) == once


class TestExpandErrors:
    def test_unknown_macro_names_model_and_site(self, registry):
        with pytest.raises(UnknownMacro) as exc:
            registry.expand("SELECT 1\nFROM {{ nope(1) }}", origin="staging.orders")
        err = exc.value
        assert err.name == "nope"
        assert err.origin == "staging.orders"
        assert err.line == 2
        assert "nope(1)" in err.token
        assert "staging.orders" in str(err)

    def test_self_recursion(self):
        reg = MacroRegistry()
        reg.define("m", [], "{{ m() }}")
        with pytest.raises(MacroRecursionLimit) as exc:
            reg.expand("SELECT {{ m() }}")
        assert exc.value.limit == MAX_MACRO_DEPTH
        assert set(exc.value.chain) == {"m"}

    def test_mutual_recursion(self):
        reg = MacroRegistry()
        reg.define("ping", [], "{{ pong() }}")
        reg.define("pong", [], "{{ ping() }}")
        with pytest.raises(MacroRecursionLimit):
            reg.expand("{{ ping() }}")

    def test_custom_depth(self):
        reg = MacroRegistry(max_depth=2)
        reg.define("a", [], "{{ b() }}")
        reg.define("b", [], "{{ c() }}")
        reg.define("c", [], "1")
        with pytest.raises(MacroRecursionLimit):
            reg.expand("{{ a() }}")

    def test_too_many_arguments(self, registry):
        with pytest.raises(MacroArgumentError):
            registry.expand("{{ cents('a', 'b') }}")

    def test_missing_argument(self, registry):
        with pytest.raises(MacroArgumentError):
            registry.expand("{{ cents() }}")

    def test_unknown_keyword(self, registry):
        with pytest.raises(MacroArgumentError):
            registry.expand("{{ cents(column='a') }}")

    def test_multiple_values(self, registry):
        with pytest.raises(MacroArgumentError):
            registry.expand("{{ cents('a', col='b') }}")


class TestMacroBodies:
    def test_unknown_macro_called_from_macro(self):
        reg = MacroRegistry()
        reg.define("outer", [], "{{ missing() }}")
        with pytest.raises(UnknownMacro) as exc:
            reg.expand("SELECT {{ outer() }}", origin="marts.revenue")
        assert exc.value.name == "missing"
        assert exc.value.origin == "marts.revenue"
        assert "outer" in exc.value.token

    def test_sql_comments_are_rendered(self, registry):
        assert registry.expand("SELECT 1 -- {{ cents('a') }}") == "SELECT 1 -- a / 100"

    def test_undefined_name_in_body(self):
        reg = MacroRegistry()
        reg.define("m", ["a"], "{{ typo }}")
        with pytest.raises(TemplateSyntaxError):
            reg.expand("{{ m(1) }}")


class TestLoadMacros:
    def test_load_blocks(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "money.sql").write_text(textwrap.dedent("""\
            {% macro cents_to_dollars(column, scale=2) %}
                round({{ column }} / 100.0, {{ scale }})
            {% endmacro %}

            {% macro is_positive(column) %}
                {{ column }} > 0
            {% endmacro %}
        """))
        registry = load_macros(macros)
        assert len(registry) == 2
        macro = registry.get("cents_to_dollars")
        assert [p.name for p in macro.parameters] == ["column", "scale"]
        assert macro.parameters[1].default == 2
        assert not macro.parameters[1].required
        assert macro.source_path == macros / "money.sql"
        assert registry.expand("{{ cents_to_dollars('amount') }}") == "round(amount / 100.0, 2)"

    def test_missing_directory(self, tmp_path):
        assert len(load_macros(tmp_path / "macros")) == 0

    def test_duplicate_across_files(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "a.sql").write_text("{% macro m() %}1{% endmacro %}")
        (macros / "b.sql").write_text("{% macro m() %}2{% endmacro %}")
        with pytest.raises(DuplicateMacro):
            load_macros(macros)

    def test_unterminated_block(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "bad.sql").write_text("{% macro m() %}\nSELECT 1\n")
        with pytest.raises(InvalidMacroDefinition) as exc:
            load_macros(macros)
        assert exc.value.path == macros / "bad.sql"

    def test_bad_parameter_list(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "bad.sql").write_text("{% macro m(a b) %}1{% endmacro %}")
        with pytest.raises(InvalidMacroDefinition):
            load_macros(macros)

    def test_calls_across_files(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "a.sql").write_text("{% macro total(col) %}sum({{ cents(col) }}){% endmacro %}")
        (macros / "b.sql").write_text("{% macro cents(col) %}{{ col }} / 100{% endmacro %}")
        registry = load_macros(macros)
        assert registry.expand("SELECT {{ total('amount') }}") == "SELECT sum(amount / 100)"

    def test_control_flow_in_body(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "cols.sql").write_text(textwrap.dedent("""\
            {% macro pick(cols) %}
            {% for c in cols %}{{ c }}{% if not loop.last %}, {% endif %}{% endfor %}
            {% endmacro %}
        """))
        registry = load_macros(macros)
        assert registry.expand("SELECT {{ pick(['a', 'b']) }} FROM t") == "SELECT a, b FROM t"

    def test_non_literal_default(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "bad.sql").write_text("{% macro m(a=b) %}1{% endmacro %}")
        with pytest.raises(InvalidMacroDefinition):
            load_macros(macros)

    def test_ref_is_reserved_in_files(self, tmp_path):
        macros = tmp_path / "macros"
        macros.mkdir()
        (macros / "bad.sql").write_text("{% macro ref(name) %}{{ name }}{% endmacro %}")
        with pytest.raises(InvalidMacroDefinition):
            load_macros(macros)
