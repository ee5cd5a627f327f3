"""
Variable substitution service for replacing {{variable}} placeholders.

This service handles extraction and substitution of variable placeholders
in request templates (URL, headers, query params, body, auth fields).
Substitution is a single pass: values that themselves contain placeholders
are inserted verbatim and not expanded again.
"""

import re
from typing import Iterable, List, Tuple

from ..schemas.environment import Environment, Variable
from ..schemas.request import KeyValuePair


# Pattern to match {{variable_name}} placeholders
VARIABLE_PATTERN = re.compile(r'\{\{([^{}]+)\}\}')


def extract_variables(template: str) -> List[str]:
    """
    Extract all variable names from a template string.

    Example:
        >>> extract_variables("Hello {{name}}, your id is {{user-id}}")
        ['name', 'user-id']
    """
    if not template:
        return []

    return VARIABLE_PATTERN.findall(template)


def substitute(template: str, variables: dict[str, str]) -> Tuple[str, List[str]]:
    """
    Replace variable placeholders in a template with their values.

    Args:
        template: String containing {{variable}} placeholders
        variables: Dictionary mapping variable names to their values

    Returns:
        Tuple of (substituted string, list of unmatched variable names)

    Example:
        >>> substitute("Hello {{name}}", {"name": "World"})
        ('Hello World', [])
        >>> substitute("Hello {{name}}", {})
        ('Hello {{name}}', ['name'])
    """
    if not template:
        return template, []

    unmatched: List[str] = []

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        if var_name in variables:
            return variables[var_name]
        unmatched.append(var_name)
        return match.group(0)  # Keep original placeholder

    result = VARIABLE_PATTERN.sub(replace_match, template)
    return result, unmatched


def environment_variables(environment: Environment | None) -> dict[str, str]:
    """
    Flatten an environment into a name -> value mapping.

    Only enabled variables are included. On duplicate keys the first
    enabled occurrence wins.
    """
    if environment is None:
        return {}

    variables: dict[str, str] = {}
    for variable in environment.variables:
        if variable.enabled and variable.key not in variables:
            variables[variable.key] = variable.value
    return variables


def interpolate(text: str, environment: Environment | None) -> str:
    """Resolve every enabled ``{{key}}`` in ``text`` against ``environment``."""
    if environment is None or not text:
        return text
    return substitute(text, environment_variables(environment))[0]


def apply_environment_updates(
    environment: Environment | None,
    updates: dict[str, str],
) -> Environment | None:
    """
    Return a copy of ``environment`` with script updates applied.

    Existing variables take the new value and are disabled when the value is
    empty (``unset``). Unknown keys with a non-empty value are appended as
    enabled variables. The input environment is never modified.
    """
    if environment is None or not updates:
        return environment

    variables = [variable.model_copy() for variable in environment.variables]
    for key, value in updates.items():
        existing = next((v for v in variables if v.key == key), None)
        if existing is not None:
            existing.value = value
            existing.enabled = value != ""
        elif value != "":
            variables.append(Variable(key=key, value=value, enabled=True))

    return environment.model_copy(update={"variables": variables})


class VariableResolver:
    """
    Resolves request fields against one environment and records warnings
    for placeholders that stay unresolved.
    """

    def __init__(self, environment: Environment | None):
        self.environment = environment
        self.variables = environment_variables(environment)
        self.warnings: list[str] = []

    def resolve(self, text: str | None, location: str | None = None) -> str:
        if not text:
            return text or ""
        result, unmatched = substitute(text, self.variables)
        if location:
            for name in unmatched:
                warning = f"Undefined variable in {location}: {{{{{name}}}}}"
                if warning not in self.warnings:
                    self.warnings.append(warning)
        return result

    def resolve_pairs(
        self,
        pairs: Iterable[KeyValuePair],
        location: str | None = None,
    ) -> dict[str, str]:
        """Resolve the enabled pairs into a dict; later keys overwrite earlier ones."""
        result: dict[str, str] = {}
        for pair in pairs:
            if pair.enabled:
                result[self.resolve(pair.key, location)] = self.resolve(pair.value, location)
        return result
