"""
Restricted execution environment for user scripts.

Scripts are Python source validated against an AST deny-list and executed
with an allow-listed set of builtins plus whatever capabilities the caller
injects. There is no module loading, no file/process access and no access
to private or dunder attributes.

The wall-clock budget is enforced by a trace function installed in the
worker thread: once the deadline passes, every traced line in script code
raises ``ScriptTimeoutError``. ``ScriptTimeoutError`` derives from
``BaseException`` so ``except Exception`` in a script cannot swallow it.

A single C-level operation never reaches the tracer, so ``**``, ``*`` and
``<<`` are rewritten into calls that refuse results above a size limit
before computing them. Other long-running C calls are bounded by the
process that hosts the sandbox (see ``script_runner``).
"""

import ast
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..config import DEFAULT_SCRIPT_TIMEOUT


class ScriptTimeoutError(BaseException):
    """Raised inside a script that exceeded its execution budget."""


MAX_INT_BITS = 1_000_000
MAX_SEQUENCE_LENGTH = 10_000_000

SEQUENCE_TYPES = (str, bytes, list, tuple)


def check_int_bits(bits: int) -> None:
    if bits > MAX_INT_BITS:
        raise ValueError(f"Result too large: more than {MAX_INT_BITS} bits")


def check_length(length: int) -> None:
    if length > MAX_SEQUENCE_LENGTH:
        raise ValueError(f"Result too large: more than {MAX_SEQUENCE_LENGTH} items")


def guarded_pow(base, exp, mod=None):
    if mod is None and isinstance(base, int) and isinstance(exp, int) and exp > 1 and abs(base) > 1:
        check_int_bits(base.bit_length() * exp)
    return pow(base, exp, mod)


def guarded_mult(left, right):
    if isinstance(left, int) and isinstance(right, int):
        check_int_bits(left.bit_length() + right.bit_length())
    elif isinstance(left, SEQUENCE_TYPES) and isinstance(right, int):
        check_length(len(left) * right)
    elif isinstance(right, SEQUENCE_TYPES) and isinstance(left, int):
        check_length(len(right) * left)
    return left * right


def guarded_lshift(left, right):
    if isinstance(left, int) and isinstance(right, int) and left:
        check_int_bits(left.bit_length() + right)
    return left << right


GUARDS = {
    "__guard_pow__": guarded_pow,
    "__guard_mult__": guarded_mult,
    "__guard_lshift__": guarded_lshift,
}


class ArithmeticGuard(ast.NodeTransformer):
    """Route ``**``, ``*`` and ``<<`` through the size-checking guards."""

    OPERATORS = {ast.Pow: "__guard_pow__", ast.Mult: "__guard_mult__", ast.LShift: "__guard_lshift__"}

    def guard_call(self, op, left, right, node):
        call = ast.Call(func=ast.Name(id=self.OPERATORS[type(op)], ctx=ast.Load()), args=[left, right], keywords=[])
        return ast.copy_location(call, node)

    def visit_BinOp(self, node):
        self.generic_visit(node)
        if type(node.op) not in self.OPERATORS:
            return node
        return self.guard_call(node.op, node.left, node.right, node)

    def visit_AugAssign(self, node):
        self.generic_visit(node)
        # Attribute and subscript targets stay as they are
        if type(node.op) not in self.OPERATORS or not isinstance(node.target, ast.Name):
            return node
        current = ast.Name(id=node.target.id, ctx=ast.Load())
        value = self.guard_call(node.op, current, node.value, node)
        return ast.copy_location(ast.Assign(targets=[node.target], value=value), node)


@dataclass
class SandboxOutcome:
    success: bool
    error: Optional[str] = None
    timed_out: bool = False


class SandboxExecutor:
    """Validates and runs untrusted script text."""

    MAX_SCRIPT_LENGTH = 100_000

    # Grace period for a worker stuck inside a C call that the tracer cannot interrupt
    JOIN_GRACE_SECONDS = 0.5

    BLOCKED_NODES = {
        ast.Import: "import statements are not allowed",
        ast.ImportFrom: "import statements are not allowed",
        ast.Global: "'global' is not allowed",
        ast.Nonlocal: "'nonlocal' is not allowed",
        ast.ClassDef: "class definitions are not allowed",
        ast.AsyncFunctionDef: "async code is not allowed",
        ast.Await: "async code is not allowed",
        ast.AsyncFor: "async code is not allowed",
        ast.AsyncWith: "async code is not allowed",
    }

    BLOCKED_CALLS = {
        "__import__", "eval", "exec", "compile", "globals", "locals",
        "vars", "dir", "open", "input", "breakpoint", "getattr", "setattr",
        "delattr", "help", "exit", "quit", "memoryview", "type", "super",
    }

    # Attributes that reach frames, code objects or format-string traversal
    BLOCKED_ATTRS = {
        "format", "format_map", "gi_frame", "gi_code", "cr_frame", "cr_code",
        "ag_frame", "ag_code", "f_globals", "f_locals", "f_back", "f_builtins",
        "tb_frame", "tb_next", "mro",
    }

    ALLOWED_BUILTINS = {
        "len": len,
        "range": range,
        "str": str,
        "int": int,
        "float": float,
        "bool": bool,
        "dict": dict,
        "list": list,
        "tuple": tuple,
        "set": set,
        "isinstance": isinstance,
        "enumerate": enumerate,
        "zip": zip,
        "map": map,
        "filter": filter,
        "sorted": sorted,
        "reversed": reversed,
        "min": min,
        "max": max,
        "sum": sum,
        "abs": abs,
        "round": round,
        "repr": repr,
        "any": any,
        "all": all,
        "chr": chr,
        "ord": ord,
        "divmod": divmod,
        "pow": guarded_pow,
        "Exception": Exception,
        "ValueError": ValueError,
        "TypeError": TypeError,
        "KeyError": KeyError,
        "IndexError": IndexError,
        "AssertionError": AssertionError,
        "True": True,
        "False": False,
        "None": None,
    }

    def __init__(self, timeout: float = DEFAULT_SCRIPT_TIMEOUT):
        self.timeout = timeout

    def validate(self, code: str) -> Optional[str]:
        """AST-based code validation. Returns an error message, or None if allowed."""
        try:
            tree = ast.parse(code)
        except SyntaxError as e:
            return f"Syntax error: {e.msg} (line {e.lineno})"

        for node in ast.walk(tree):
            for node_type, message in self.BLOCKED_NODES.items():
                if isinstance(node, node_type):
                    return f"Blocked: {message}"

            if isinstance(node, ast.Call):
                func = node.func
                if isinstance(func, ast.Name) and func.id in self.BLOCKED_CALLS:
                    return f"Blocked call: '{func.id}()' is not allowed in scripts"

            elif isinstance(node, ast.Attribute):
                if node.attr.startswith("_") or node.attr in self.BLOCKED_ATTRS:
                    return f"Blocked attribute access: '{node.attr}' is not allowed in scripts"

            elif isinstance(node, ast.Name):
                if node.id.startswith("__"):
                    return f"Blocked name: '{node.id}' is not allowed in scripts"

            elif isinstance(node, ast.ExceptHandler):
                if node.type is None:
                    return "Blocked: bare 'except:' is not allowed, catch Exception instead"

        return None

    def execute(
        self,
        code: str,
        injected_globals: dict[str, Any] | None = None,
        filename: str = "<script>",
    ) -> SandboxOutcome:
        """
        Execute ``code`` with the allow-listed builtins and ``injected_globals``.

        Never raises for script errors; the outcome carries the message.
        """
        if len(code) > self.MAX_SCRIPT_LENGTH:
            return SandboxOutcome(
                success=False,
                error=f"Script exceeds maximum length of {self.MAX_SCRIPT_LENGTH} characters",
            )

        validation_error = self.validate(code)
        if validation_error:
            return SandboxOutcome(success=False, error=validation_error)

        tree = ast.fix_missing_locations(ArithmeticGuard().visit(ast.parse(code)))
        compiled = compile(tree, filename, "exec")
        sandbox_globals: dict[str, Any] = {"__builtins__": dict(self.ALLOWED_BUILTINS), **GUARDS}
        if injected_globals:
            sandbox_globals.update(injected_globals)

        deadline = time.monotonic() + self.timeout
        outcome = SandboxOutcome(success=False)

        def check_deadline(frame, event, arg):
            if time.monotonic() > deadline:
                raise ScriptTimeoutError()
            return check_deadline

        def trace_calls(frame, event, arg):
            if frame.f_code.co_filename != filename:
                return None
            return check_deadline(frame, event, arg)

        def run():
            sys.settrace(trace_calls)
            try:
                exec(compiled, sandbox_globals)
                outcome.success = True
            except ScriptTimeoutError:
                outcome.timed_out = True
            except Exception as e:
                outcome.error = str(e) or e.__class__.__name__
            finally:
                sys.settrace(None)

        worker = threading.Thread(target=run, name=f"sandbox{filename}", daemon=True)
        worker.start()
        worker.join(self.timeout + self.JOIN_GRACE_SECONDS)

        if worker.is_alive() or outcome.timed_out:
            return SandboxOutcome(
                success=False,
                error=f"Script execution timed out after {int(self.timeout * 1000)} ms",
                timed_out=True,
            )
        return outcome
