"""
Property-based tests for the variable substitution service.

Covers placeholder extraction, substitution, preservation of undefined
placeholders and environment flattening rules.
"""

import pytest
from hypothesis import given, strategies as st, settings

from api_workbench.schemas.environment import Environment, Variable
from api_workbench.schemas.request import KeyValuePair
from api_workbench.services.variable_substitution import (
    VariableResolver,
    apply_environment_updates,
    environment_variables,
    extract_variables,
    interpolate,
    substitute,
)


# Strategy for generating valid variable names (alphanumeric + underscore)
variable_name_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_"),
    min_size=1,
    max_size=20,
).filter(lambda s: s[0].isalpha() or s[0] == "_")  # Must start with letter or underscore

# Values never contain braces so they cannot form new placeholders
plain_value_strategy = st.text(max_size=100).filter(lambda v: "{" not in v and "}" not in v)


class TestPlaceholderExtraction:
    """
    Extraction returns every ``{{name}}`` placeholder in a template.
    """

    @given(var_names=st.lists(variable_name_strategy, min_size=1, max_size=5, unique=True))
    @settings(max_examples=100)
    def test_extracts_all_variables_from_template(self, var_names: list[str]):
        template = " ".join("{{" + name + "}}" for name in var_names)

        extracted = extract_variables(template)

        assert set(extracted) == set(var_names)

    @given(text=st.text(min_size=0, max_size=100).filter(lambda s: "{{" not in s))
    @settings(max_examples=100)
    def test_returns_empty_for_no_placeholders(self, text: str):
        assert extract_variables(text) == []

    @given(var_name=variable_name_strategy, prefix=st.text(max_size=20), suffix=st.text(max_size=20))
    @settings(max_examples=100)
    def test_extracts_variable_regardless_of_surrounding_text(self, var_name: str, prefix: str, suffix: str):
        # Strip braces from prefix/suffix to avoid interference
        prefix = prefix.replace("{", "").replace("}", "")
        suffix = suffix.replace("{", "").replace("}", "")

        extracted = extract_variables(prefix + "{{" + var_name + "}}" + suffix)
        assert var_name in extracted

    def test_names_may_contain_dashes_and_dots(self):
        assert extract_variables("{{user-id}}/{{api.key}}") == ["user-id", "api.key"]


class TestVariableSubstitution:
    """
    Defined placeholders are replaced by their values and nothing else in
    the template changes.
    """

    @given(var_name=variable_name_strategy, var_value=plain_value_strategy)
    @settings(max_examples=100)
    def test_defined_variable_is_replaced(self, var_name: str, var_value: str):
        result, unmatched = substitute("{{" + var_name + "}}", {var_name: var_value})

        assert result == var_value
        assert unmatched == []

    @given(
        var_name=variable_name_strategy,
        var_value=plain_value_strategy,
        prefix=st.text(max_size=20).filter(lambda s: "{" not in s and "}" not in s),
        suffix=st.text(max_size=20).filter(lambda s: "{" not in s and "}" not in s),
    )
    @settings(max_examples=100)
    def test_substitution_preserves_surrounding_text(self, var_name: str, var_value: str, prefix: str, suffix: str):
        result, unmatched = substitute(prefix + "{{" + var_name + "}}" + suffix, {var_name: var_value})

        assert result == prefix + var_value + suffix
        assert unmatched == []

    def test_substitution_is_single_pass(self):
        """A value containing a placeholder is inserted verbatim."""
        result, unmatched = substitute("{{a}}", {"a": "{{b}}", "b": "x"})

        assert result == "{{b}}"
        assert unmatched == []

    def test_repeated_placeholder_replaced_everywhere(self):
        result, _ = substitute("{{x}}-{{x}}", {"x": "1"})
        assert result == "1-1"


class TestUndefinedVariablePreservation:
    """
    Undefined placeholders stay in the output and are reported.
    """

    @given(var_name=variable_name_strategy)
    @settings(max_examples=100)
    def test_undefined_variable_placeholder_is_preserved(self, var_name: str):
        template = "{{" + var_name + "}}"

        result, unmatched = substitute(template, {})

        assert result == template
        assert var_name in unmatched

    @given(
        defined_vars=st.dictionaries(
            keys=variable_name_strategy,
            values=plain_value_strategy,
            min_size=1,
            max_size=3,
        ),
        undefined_var=variable_name_strategy,
    )
    @settings(max_examples=100)
    def test_mixed_defined_and_undefined_variables(self, defined_vars: dict[str, str], undefined_var: str):
        if undefined_var in defined_vars:
            return  # Skip this case

        parts = ["{{" + name + "}}" for name in defined_vars]
        parts.append("{{" + undefined_var + "}}")

        result, unmatched = substitute(" ".join(parts), defined_vars)

        assert undefined_var in unmatched
        assert "{{" + undefined_var + "}}" in result
        for var_name in defined_vars:
            assert "{{" + var_name + "}}" not in result


class TestEnvironmentFlattening:
    """
    Only enabled variables resolve; on duplicate keys the first enabled
    occurrence wins.
    """

    def test_disabled_variables_are_ignored(self):
        env = Environment(variables=[
            Variable(key="host", value="a", enabled=False),
            Variable(key="port", value="80"),
        ])

        assert environment_variables(env) == {"port": "80"}
        assert interpolate("{{host}}:{{port}}", env) == "{{host}}:80"

    def test_first_enabled_duplicate_wins(self):
        env = Environment(variables=[
            Variable(key="k", value="off", enabled=False),
            Variable(key="k", value="first"),
            Variable(key="k", value="second"),
        ])

        assert interpolate("{{k}}", env) == "first"

    def test_no_environment_leaves_text_untouched(self):
        assert interpolate("{{k}}", None) == "{{k}}"
        assert environment_variables(None) == {}

    @given(key=variable_name_strategy, value=plain_value_strategy.filter(bool))
    @settings(max_examples=50)
    def test_interpolate_uses_enabled_value(self, key: str, value: str):
        env = Environment(variables=[Variable(key=key, value=value)])
        assert interpolate("[{{" + key + "}}]", env) == f"[{value}]"

    @given(
        enabled=st.dictionaries(variable_name_strategy, plain_value_strategy.filter(bool), min_size=1, max_size=4),
        disabled=variable_name_strategy,
    )
    @settings(max_examples=100)
    def test_second_pass_changes_nothing(self, enabled: dict[str, str], disabled: str):
        enabled.pop(disabled, None)
        env = Environment(variables=[
            *(Variable(key=k, value=v) for k, v in enabled.items()),
            Variable(key=disabled, value="hidden", enabled=False),
        ])
        text = " ".join("{{" + name + "}}" for name in [*enabled, disabled])

        once = interpolate(text, env)

        assert interpolate(once, env) == once
        assert not set(extract_variables(once)) & set(enabled)
        assert "{{" + disabled + "}}" in once


class TestVariableResolver:

    def test_records_one_warning_per_unresolved_placeholder(self):
        resolver = VariableResolver(Environment(variables=[Variable(key="a", value="1")]))

        assert resolver.resolve("{{a}}/{{missing}}", "URL") == "1/{{missing}}"
        resolver.resolve("{{missing}}", "URL")

        assert resolver.warnings == ["Undefined variable in URL: {{missing}}"]

    def test_no_location_means_no_warning(self):
        resolver = VariableResolver(None)
        assert resolver.resolve("{{x}}") == "{{x}}"
        assert resolver.warnings == []

    def test_resolve_pairs_skips_disabled_pairs(self):
        resolver = VariableResolver(Environment(variables=[Variable(key="v", value="1")]))
        pairs = [
            KeyValuePair(key="a", value="{{v}}"),
            KeyValuePair(key="b", value="2", enabled=False),
        ]

        assert resolver.resolve_pairs(pairs, "headers") == {"a": "1"}

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_input_resolves_to_empty_string(self, text):
        assert VariableResolver(None).resolve(text, "body") == ""


class TestEnvironmentUpdates:

    def test_updates_existing_and_appends_new(self):
        env = Environment(name="dev", variables=[Variable(key="token", value="old")])

        updated = apply_environment_updates(env, {"token": "new", "extra": "1"})

        assert [(v.key, v.value, v.enabled) for v in updated.variables] == [
            ("token", "new", True),
            ("extra", "1", True),
        ]
        # Original is untouched
        assert env.variables[0].value == "old"

    def test_empty_value_disables_existing_variable(self):
        env = Environment(variables=[Variable(key="token", value="old")])

        updated = apply_environment_updates(env, {"token": "", "ghost": ""})

        assert len(updated.variables) == 1
        assert updated.variables[0].enabled is False
        assert interpolate("{{token}}", updated) == "{{token}}"

    def test_no_updates_returns_same_environment(self):
        env = Environment()
        assert apply_environment_updates(env, {}) is env
        assert apply_environment_updates(None, {"a": "b"}) is None
