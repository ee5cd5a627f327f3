"""
Runs pre-request and test scripts for request/response sends.

Each run happens in a child process with a fresh ``pm`` object, console and
update map. Inside the child the sandbox tracer enforces the time budget.
The parent kills the child once the budget plus a grace period has passed,
which bounds C-level calls the tracer cannot interrupt. Environment updates
collected before a script failure are still reported, except after a kill.
"""

import functools
import multiprocessing
import time
from typing import Optional

from ..config import DEFAULT_SCRIPT_TIMEOUT
from ..log import get_logger
from ..schemas.environment import Environment
from ..schemas.execute import Response, ScriptResult, TestResult
from .script_api import (
    EnvironmentAccessor,
    PmApi,
    RequestSnapshot,
    ScriptConsole,
    build_capabilities,
)
from .script_sandbox import SandboxExecutor


log = get_logger("scripts")

# Seconds allowed on top of the script budget for the child to start and report back
START_GRACE_SECONDS = {"forkserver": 1.0, "spawn": 5.0}


@functools.cache
def process_context() -> multiprocessing.context.BaseContext:
    if "forkserver" in multiprocessing.get_all_start_methods():
        context = multiprocessing.get_context("forkserver")
        context.set_forkserver_preload([__name__])
        return context
    return multiprocessing.get_context("spawn")


def execute_script(
    script: str,
    timeout: float,
    request: RequestSnapshot,
    response: Optional[Response],
    environment: Optional[Environment],
    filename: str,
) -> ScriptResult:
    """Run ``script`` in this process and collect what it produced."""
    console_logs: list[str] = []
    updates: dict[str, str] = {}
    test_results: list[TestResult] = []

    pm = PmApi(
        request=request,
        response=response,
        environment=EnvironmentAccessor(environment, updates),
        test_results=test_results,
    )
    injected = build_capabilities(ScriptConsole(console_logs))
    injected["pm"] = pm
    injected["undefined"] = None

    outcome = SandboxExecutor(timeout=timeout).execute(script, injected, filename=filename)
    return ScriptResult(
        success=outcome.success,
        error=outcome.error,
        console_logs=list(console_logs),
        environment_updates=dict(updates),
        test_results=list(test_results),
    )


def child_main(connection, *args) -> None:
    try:
        connection.send(execute_script(*args))
    finally:
        connection.close()


class ScriptRunner:
    """Executes user scripts in a sandboxed child process."""

    def __init__(self, timeout: float = DEFAULT_SCRIPT_TIMEOUT):
        self.timeout = timeout

    def run_pre_request(
        self,
        script: str,
        request: RequestSnapshot,
        environment: Optional[Environment] = None,
    ) -> ScriptResult:
        return self._run(script, request, None, environment, "<pre-request-script>")

    def run_test(
        self,
        script: str,
        request: RequestSnapshot,
        response: Response,
        environment: Optional[Environment] = None,
    ) -> ScriptResult:
        return self._run(script, request, response, environment, "<test-script>")

    def _run(
        self,
        script: str,
        request: RequestSnapshot,
        response: Optional[Response],
        environment: Optional[Environment],
        filename: str,
    ) -> ScriptResult:
        if not script or not script.strip():
            return ScriptResult(success=True)

        start = time.perf_counter()
        result = self._run_in_child(script, request, response, environment, filename)
        result.duration_ms = int((time.perf_counter() - start) * 1000)

        if result.success:
            log.debug("{} finished in {} ms ({} tests)", filename, result.duration_ms, len(result.test_results))
        else:
            log.info("{} failed after {} ms: {}", filename, result.duration_ms, result.error)
        return result

    def _run_in_child(
        self,
        script: str,
        request: RequestSnapshot,
        response: Optional[Response],
        environment: Optional[Environment],
        filename: str,
    ) -> ScriptResult:
        context = process_context()
        deadline = (
            self.timeout
            + SandboxExecutor.JOIN_GRACE_SECONDS
            + START_GRACE_SECONDS[context.get_start_method()]
        )
        reader, writer = context.Pipe(duplex=False)
        process = context.Process(
            target=child_main,
            args=(writer, script, self.timeout, request, response, environment, filename),
            name=f"script{filename}",
            daemon=True,
        )
        process.start()
        writer.close()

        result: Optional[ScriptResult] = None
        try:
            if reader.poll(deadline):
                result = reader.recv()
        except EOFError:
            pass
        finally:
            reader.close()
            if process.is_alive():
                log.warning("{} still running after {:.1f} s, killing it", filename, deadline)
                process.kill()
            process.join()

        if result is not None:
            return result
        if process.exitcode not in (0, None) and process.exitcode != -9:
            return ScriptResult(success=False, error=f"Script process exited with code {process.exitcode}")
        return ScriptResult(
            success=False,
            error=f"Script execution timed out after {int(self.timeout * 1000)} ms",
        )
