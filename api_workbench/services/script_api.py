"""
The ``pm`` object and helper capabilities exposed to user scripts.

Scripts see read-only snapshots of the request and response, an
environment accessor whose writes are collected as pending updates, a
test registry and a chainable assertion builder::

    pm.environment.set("token", pm.response.json()["token"])

    def status_is_ok():
        pm.expect(pm.response.status).to.equal(200)

    pm.test("status is 200", status_is_ok)
    pm.test("body mentions user", lambda: pm.expect(pm.response.text()).to.include("user"))
"""

import base64
import json
import math
import datetime as _dt
from types import MappingProxyType, SimpleNamespace
from typing import Any, Callable, Optional
from urllib.parse import quote, unquote

from ..schemas.environment import Environment
from ..schemas.execute import Response, TestResult
from .variable_substitution import environment_variables


def format_value(value: Any) -> str:
    """Render a value for assertion messages, JSON style where possible."""
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)


def type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return value.__class__.__name__


_TYPE_ALIASES = {
    "str": "string",
    "int": "number",
    "float": "number",
    "bool": "boolean",
    "dict": "object",
    "list": "array",
    "none": "null",
    "undefined": "null",
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def strict_equal(actual: Any, expected: Any) -> bool:
    """Equality that does not treat booleans as numbers."""
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def deep_equal(actual: Any, expected: Any) -> bool:
    """Structural equality over JSON-like values."""
    if isinstance(actual, dict) and isinstance(expected, dict):
        return actual.keys() == expected.keys() and all(
            deep_equal(actual[key], expected[key]) for key in actual
        )
    if isinstance(actual, (list, tuple)) and isinstance(expected, (list, tuple)):
        return len(actual) == len(expected) and all(
            deep_equal(a, b) for a, b in zip(actual, expected)
        )
    return strict_equal(actual, expected)


class Expectation:
    """
    Chainable assertion builder returned by ``pm.expect(value)``.

    Language chains (``to``, ``be``, ``have`` ...) return the same object.
    ``not_`` negates every following assertion. Flag assertions such as
    ``true`` and ``null`` run on attribute access and may also be called.
    Failed assertions raise ``AssertionError``.
    """

    def __init__(self, value: Any, response: Optional[Response] = None):
        self._value = value
        self._response = response
        self._negate = False

    def __call__(self) -> "Expectation":
        return self

    # Language chains

    @property
    def to(self) -> "Expectation":
        return self

    @property
    def be(self) -> "Expectation":
        return self

    @property
    def been(self) -> "Expectation":
        return self

    @property
    def have(self) -> "Expectation":
        return self

    @property
    def that(self) -> "Expectation":
        return self

    @property
    def and_(self) -> "Expectation":
        return self

    @property
    def not_(self) -> "Expectation":
        self._negate = not self._negate
        return self

    def _assert(self, passed: bool, message: str, negated_message: str) -> "Expectation":
        if self._negate:
            if passed:
                raise AssertionError(negated_message)
        elif not passed:
            raise AssertionError(message)
        return self

    # Flag assertions

    @property
    def true(self) -> "Expectation":
        value = format_value(self._value)
        return self._assert(
            self._value is True,
            f"Expected {value} to be true",
            f"Expected {value} not to be true",
        )

    @property
    def false(self) -> "Expectation":
        value = format_value(self._value)
        return self._assert(
            self._value is False,
            f"Expected {value} to be false",
            f"Expected {value} not to be false",
        )

    @property
    def null(self) -> "Expectation":
        return self._assert(
            self._value is None,
            f"Expected {format_value(self._value)} to be null",
            "Expected value not to be null",
        )

    @property
    def undefined(self) -> "Expectation":
        return self._assert(
            self._value is None,
            f"Expected {format_value(self._value)} to be undefined",
            "Expected value not to be undefined",
        )

    none = null

    @property
    def ok(self) -> "Expectation":
        value = format_value(self._value)
        return self._assert(
            bool(self._value),
            f"Expected {value} to be truthy",
            f"Expected {value} to be falsy",
        )

    # Value assertions

    def equal(self, expected: Any) -> "Expectation":
        value, other = format_value(self._value), format_value(expected)
        return self._assert(
            strict_equal(self._value, expected),
            f"Expected {value} to equal {other}",
            f"Expected {value} not to equal {other}",
        )

    equals = equal

    def eql(self, expected: Any) -> "Expectation":
        value, other = format_value(self._value), format_value(expected)
        return self._assert(
            deep_equal(self._value, expected),
            f"Expected {value} to deeply equal {other}",
            f"Expected {value} not to deeply equal {other}",
        )

    def a(self, expected_type: str) -> "Expectation":
        wanted = _TYPE_ALIASES.get(expected_type.lower(), expected_type.lower())
        actual = type_name(self._value)
        value = format_value(self._value)
        return self._assert(
            actual == wanted,
            f"Expected {value} to be a {expected_type}, but got {actual}",
            f"Expected {value} not to be a {expected_type}",
        )

    an = a

    def above(self, bound: Any) -> "Expectation":
        return self._assert(
            _is_number(self._value) and self._value > bound,
            f"Expected {format_value(self._value)} to be above {format_value(bound)}",
            f"Expected {format_value(self._value)} to be at most {format_value(bound)}",
        )

    def below(self, bound: Any) -> "Expectation":
        return self._assert(
            _is_number(self._value) and self._value < bound,
            f"Expected {format_value(self._value)} to be below {format_value(bound)}",
            f"Expected {format_value(self._value)} to be at least {format_value(bound)}",
        )

    def property(self, name: str, *expected: Any) -> "Expectation":
        if isinstance(self._value, dict):
            present = name in self._value
            actual = self._value.get(name)
        else:
            present = not name.startswith("_") and hasattr(self._value, name)
            actual = getattr(self._value, name, None) if present else None

        if not expected or not present:
            return self._assert(
                present,
                f'Expected object to have property "{name}"',
                f'Expected object not to have property "{name}"',
            )
        return self._assert(
            strict_equal(actual, expected[0]),
            f'Expected property "{name}" to equal {format_value(expected[0])}, '
            f"got {format_value(actual)}",
            f'Expected property "{name}" not to equal {format_value(expected[0])}',
        )

    def length(self, expected: int) -> "Expectation":
        try:
            actual = len(self._value)
        except TypeError:
            raise AssertionError(f"Expected {format_value(self._value)} to have a length") from None
        return self._assert(
            actual == expected,
            f"Expected length {expected}, got {actual}",
            f"Expected length not to be {expected}",
        )

    def status(self, code: int) -> "Expectation":
        actual = self._response.status if self._response is not None else None
        return self._assert(
            actual == code,
            f"Expected status {code}, got {format_value(actual)}",
            f"Expected status not to be {code}",
        )

    def include(self, item: Any) -> "Expectation":
        value = self._value
        if isinstance(value, str):
            passed = isinstance(item, str) and item in value
            subject = "string"
        elif isinstance(value, (list, tuple)):
            passed = any(strict_equal(element, item) for element in value)
            subject = "array"
        elif isinstance(value, dict):
            if isinstance(item, dict):
                passed = all(
                    key in value and deep_equal(value[key], expected)
                    for key, expected in item.items()
                )
            else:
                passed = item in value
            subject = "object"
        else:
            raise AssertionError("Include assertion requires string, array or object")
        return self._assert(
            passed,
            f"Expected {subject} to include {format_value(item)}",
            f"Expected {subject} not to include {format_value(item)}",
        )

    contain = include


class RequestSnapshot:
    """Read-only view of the outgoing request."""

    __slots__ = ("_url", "_method", "_headers", "_body")

    def __init__(self, url: str, method: str, headers: dict[str, str], body: str = ""):
        self._url = url
        self._method = method
        self._headers = MappingProxyType(dict(headers))
        self._body = body

    def __reduce__(self):
        # Scripts run in a child process; the mapping proxy itself cannot be pickled
        return (RequestSnapshot, (self._url, self._method, dict(self._headers), self._body))

    @property
    def url(self) -> str:
        return self._url

    @property
    def method(self) -> str:
        return self._method

    @property
    def headers(self) -> MappingProxyType:
        return self._headers

    @property
    def body(self) -> str:
        return self._body


class ResponseSnapshot:
    """Read-only view of a completed response."""

    __slots__ = ("_response", "_headers")

    def __init__(self, response: Response):
        self._response = response
        self._headers = MappingProxyType(dict(response.headers))

    @property
    def status(self) -> int:
        return self._response.status

    @property
    def status_text(self) -> str:
        return self._response.status_text

    @property
    def headers(self) -> MappingProxyType:
        return self._headers

    @property
    def body(self) -> str:
        return self._response.body

    @property
    def elapsed_ms(self) -> int:
        return self._response.elapsed_ms

    time = elapsed_ms

    @property
    def size(self) -> int:
        return self._response.size

    def json(self) -> Any:
        try:
            return json.loads(self._response.body)
        except ValueError as e:
            raise ValueError(f"Response body is not valid JSON: {e}") from None

    def text(self) -> str:
        return self._response.body


class EnvironmentAccessor:
    """
    Script view of the environment.

    Reads consult pending updates first, then the environment snapshot.
    Writes only ever land in ``updates``.
    """

    def __init__(self, environment: Optional[Environment], updates: dict[str, str]):
        self._snapshot = environment_variables(environment)
        self._updates = updates

    def get(self, key: str) -> Optional[str]:
        if key in self._updates:
            return self._updates[key]
        return self._snapshot.get(key)

    def set(self, key: str, value: Any) -> None:
        self._updates[str(key)] = value if isinstance(value, str) else format_console_arg(value)

    def unset(self, key: str) -> None:
        self._updates[str(key)] = ""

    def has(self, key: str) -> bool:
        if key in self._updates:
            return self._updates[key] != ""
        return key in self._snapshot

    def to_object(self) -> dict[str, str]:
        merged = dict(self._snapshot)
        merged.update(self._updates)
        return {key: value for key, value in merged.items() if value != ""}


class PmApi:
    """The ``pm`` object."""

    def __init__(
        self,
        request: RequestSnapshot,
        response: Optional[Response],
        environment: EnvironmentAccessor,
        test_results: list[TestResult],
    ):
        self._response_model = response
        self._test_results = test_results
        self.request = request
        self.response = ResponseSnapshot(response) if response is not None else None
        self.environment = environment
        self.variables = environment

    def test(self, name: str, fn: Optional[Callable[[], Any]] = None):
        """
        Run ``fn`` and record the outcome under ``name``.

        Without ``fn`` this returns a decorator, so ``@pm.test("name")`` works too.
        """
        if fn is None:
            def decorator(func: Callable[[], Any]) -> Callable[[], Any]:
                self.test(name, func)
                return func
            return decorator

        try:
            fn()
        except Exception as e:
            self._test_results.append(
                TestResult(name=name, passed=False, error=str(e) or e.__class__.__name__)
            )
        else:
            self._test_results.append(TestResult(name=name, passed=True))
        return None

    def expect(self, value: Any) -> Expectation:
        return Expectation(value, self._response_model)


def format_console_arg(arg: Any) -> str:
    if isinstance(arg, (dict, list, tuple)):
        try:
            return json.dumps(arg, indent=2)
        except (TypeError, ValueError):
            return str(arg)
    return str(arg)


class ScriptConsole:
    """``console`` object; every call appends one line to the log."""

    def __init__(self, logs: list[str]):
        self._logs = logs

    def _write(self, prefix: str, args: tuple) -> None:
        line = " ".join(format_console_arg(arg) for arg in args)
        self._logs.append(f"{prefix}{line}")

    def log(self, *args: Any) -> None:
        self._write("", args)

    def info(self, *args: Any) -> None:
        self._write("[INFO] ", args)

    def warn(self, *args: Any) -> None:
        self._write("[WARN] ", args)

    warning = warn

    def error(self, *args: Any) -> None:
        self._write("[ERROR] ", args)

    def debug(self, *args: Any) -> None:
        self._write("[DEBUG] ", args)


def _encode_uri_component(value: Any) -> str:
    return quote(str(value), safe="-_.!~*'()")


def _encode_uri(value: Any) -> str:
    return quote(str(value), safe="-_.!~*'();/?:@&=+$,#")


def _b64encode(value: Any) -> str:
    data = value if isinstance(value, bytes) else str(value).encode("utf-8")
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")


def _stringify(value: Any, indent: Optional[int] = None) -> str:
    return json.dumps(value, indent=indent)


def build_capabilities(console: ScriptConsole) -> dict[str, Any]:
    """Host capabilities injected next to ``pm``."""
    json_namespace = SimpleNamespace(
        loads=json.loads,
        dumps=json.dumps,
        parse=json.loads,
        stringify=_stringify,
    )
    return {
        "console": console,
        "print": console.log,
        "json": json_namespace,
        "JSON": json_namespace,
        "math": math,
        "datetime": SimpleNamespace(
            datetime=_dt.datetime,
            date=_dt.date,
            time=_dt.time,
            timedelta=_dt.timedelta,
            timezone=_dt.timezone,
        ),
        "encodeURIComponent": _encode_uri_component,
        "decodeURIComponent": unquote,
        "encodeURI": _encode_uri,
        "decodeURI": unquote,
        "btoa": _b64encode,
        "atob": _b64decode,
        "base64": SimpleNamespace(b64encode=_b64encode, b64decode=_b64decode),
    }
