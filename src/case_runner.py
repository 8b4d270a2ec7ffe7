import asyncio
import time

from run_config import RunConfig
from step_errors import CaseTimeout
from step_executor import StepExecutor
from step_grammar import classify
from step_results import ABORTED, COMPLETED, FAIL, TIMED_OUT, CaseResult, NetworkLogEntry, now_iso
from step_variables import VariableContext

IDLE = "idle"
RUNNING = "running"


class NetworkLog:
    """Response events buffered while a case runs, drained into each step's result."""

    def __init__(self):
        self.entries: list[NetworkLogEntry] = []
        self._page = None

    def _on_response(self, response) -> None:
        elapsed_ms = None
        try:
            started = response.request.timing.get("responseStart", -1)
            if started is not None and started >= 0:
                elapsed_ms = int(round(started))
        except Exception:
            elapsed_ms = None
        try:
            self.entries.append(NetworkLogEntry(
                url=response.url,
                method=response.request.method,
                status=response.status,
                timestamp=now_iso(),
                elapsed_ms=elapsed_ms,
            ))
        except Exception:
            pass

    def attach(self, page) -> None:
        page.on("response", self._on_response)
        self._page = page

    def detach(self) -> None:
        if self._page is None:
            return
        try:
            self._page.remove_listener("response", self._on_response)
        except Exception:
            pass
        self._page = None

    def drain(self) -> list[NetworkLogEntry]:
        drained = list(self.entries)
        self.entries.clear()
        return drained


class CaseRun:
    """One test case through Idle → Running → Completed | TimedOut | Aborted."""

    def __init__(self, page, test_case: dict, config: RunConfig, executor: StepExecutor | None = None,
                 verbose: bool = False):
        self.page = page
        self.test_case = test_case
        self.config = config
        self.executor = executor or StepExecutor(page, config, verbose=verbose)
        self.verbose = verbose
        self.state = IDLE
        self.variables = VariableContext()
        self.network = NetworkLog() if config.capture_network else None
        self.executed = []
        self.error = None
        self._stopped = False

    @property
    def steps(self) -> list:
        return list(self.test_case.get("steps") or [])

    async def _step_loop(self) -> str:
        steps = self.steps
        for i, raw in enumerate(steps):
            if self._stopped:
                return TIMED_OUT
            description = self.variables.substitute(str(raw))
            if self.verbose:
                print(f"[STEP {i + 1}/{len(steps)}] {description}")
            action = classify(description)
            result = await self.executor.execute(action, i, description, self.variables, network=self.network)
            if self._stopped:
                # Deadline already passed; straggling result is discarded
                return TIMED_OUT
            self.executed.append(result)
            if result.status == FAIL:
                print(f"[STEP {i + 1}] ✖ FAIL: {result.error}")
                self.error = f"Step {i + 1} failed: {result.error}"
                return ABORTED
            if self.verbose:
                print(f"[STEP {i + 1}] ✓ PASS ({result.duration_ms}ms)")
        return COMPLETED

    def _discard(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None and self.verbose:
            print(f"⚠️ Abandoned step loop ended with: {task.exception()}")

    async def run(self) -> CaseResult:
        started = time.monotonic()
        self.state = RUNNING
        if self.network is not None:
            self.network.attach(self.page)
        task = asyncio.ensure_future(self._step_loop())
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.case_timeout_ms / 1000)
            if task in done:
                try:
                    self.state = task.result()
                except Exception as e:
                    self.state = ABORTED
                    self.error = f"Step execution error: {e}"
                    print(f"✖ {self.error}")
            else:
                # The in-flight engine call is left to finish on its own
                self._stopped = True
                task.add_done_callback(self._discard)
                self.state = TIMED_OUT
                self.error = str(CaseTimeout(self.config.case_timeout_ms))
                print(f"✖ [EXECUTION ERROR] {self.error}")
            executed = list(self.executed)
        finally:
            if self.network is not None:
                self.network.detach()
            self.variables.clear()

        return CaseResult(
            case=dict(self.test_case),
            executed_steps=executed,
            terminal_state=self.state,
            error=self.error,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


async def run_case(page, test_case: dict, config: RunConfig, executor: StepExecutor | None = None,
                   verbose: bool = False) -> CaseResult:
    return await CaseRun(page, test_case, config, executor=executor, verbose=verbose).run()
