import asyncio
import base64
import time
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from run_config import RunConfig
from selector_resolver import SelectorResolver
from step_actions import (
    Click,
    Conditional,
    Explicit,
    Fill,
    Navigate,
    Store,
    Unknown,
    Verify,
    WaitForCondition,
    WaitForDuration,
)
from step_errors import ActionTimeout, EngineFailure, EvidenceCaptureFailure, ResolutionFailure, StepFailure
from step_grammar import MAX_CONDITIONAL_DEPTH
from step_results import FAIL, MARKER_CONDITION_NOT_MET, MARKER_UNRECOGNIZED, PASS, StepResult, now_iso

NAVIGATION_TIMEOUT_MS = 30000
CANDIDATE_TIMEOUT_MS = 2000
EXPLICIT_TIMEOUT_MS = 5000
VERIFY_TIMEOUT_MS = 5000
WAIT_FOR_TIMEOUT_MS = 10000
PROBE_TIMEOUT_MS = 2000
SETTLE_DELAY_MS = 500

VERBS = {
    "click": "Click",
    "fill": "Fill",
    "store": "Read text from",
    "verify": "Verify",
    "wait_for": "Wait for",
}

SELECTOR_ERROR_MARKERS = (
    "while parsing selector",
    "Unexpected token",
    "is not a valid selector",
    "Unknown engine",
)


def is_selector_error(error) -> bool:
    message = str(error or "")
    return any(marker in message for marker in SELECTOR_ERROR_MARKERS)


class StepExecutor:
    """Runs one classified action against the page and reports a StepResult."""

    def __init__(self, page, config: RunConfig | None = None, resolver: SelectorResolver | None = None,
                 repair=None, base_url: str | None = None, verbose: bool = False):
        self.page = page
        self.config = config or RunConfig()
        self.resolver = resolver or SelectorResolver(self.config.stop_words)
        self.repair = repair
        self.base_url = base_url
        self.verbose = verbose

    async def execute(self, action, index: int, description: str, variables, network=None) -> StepResult:
        started_at = now_iso()
        t0 = time.monotonic()
        status, error, locator, marker, screenshot = PASS, None, None, None, None

        try:
            locator, marker = await self.perform(action, variables)
        except StepFailure as e:
            status, error = FAIL, str(e)
        except Exception as e:
            status, error = FAIL, str(EngineFailure(f"Unexpected error: {e}"))

        if self.config.capture_screenshots:
            try:
                screenshot = await self.capture_screenshot()
                if self.verbose:
                    print(f"  📸 Captured {'failure ' if status == FAIL else ''}screenshot")
            except EvidenceCaptureFailure as e:
                if self.verbose:
                    print(f"  ⚠️ {e}")

        duration_ms = int((time.monotonic() - t0) * 1000)
        finished_at = now_iso()

        # Let in-flight page mutations finish before the next step is classified
        try:
            await self.page.wait_for_timeout(SETTLE_DELAY_MS)
        except Exception:
            pass

        network_logs = tuple(network.drain()) if network is not None else ()
        return StepResult(
            index=index,
            description=description,
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            duration_ms=duration_ms,
            action=action.kind,
            locator=locator,
            marker=marker,
            error=error,
            screenshot=screenshot,
            network_logs=network_logs,
        )

    async def perform(self, action, variables, depth: int = 0) -> tuple[str | None, str | None]:
        """Carry out the action. Returns (locator used, marker)."""
        if isinstance(action, Navigate):
            return await self._navigate(action.url), None

        if isinstance(action, Click):
            locator, _ = await self._on_target(
                action.target, "click",
                lambda sel, t: self.page.click(sel, timeout=t),
            )
            return locator, None

        if isinstance(action, Fill):
            locator, _ = await self._on_target(
                action.target, "fill",
                lambda sel, t: self.page.fill(sel, action.value, timeout=t),
            )
            return locator, None

        if isinstance(action, Store):
            locator, text = await self._on_target(
                action.source, "store",
                lambda sel, t: self.page.inner_text(sel, timeout=t),
            )
            value = (text or "").strip()
            variables.set(action.name, value)
            if self.verbose:
                print(f"  → Stored {action.name} = {value!r}")
            return locator, None

        if isinstance(action, Verify):
            locator, _ = await self._on_target(
                action.target, "verify",
                lambda sel, t: self.page.wait_for_selector(sel, state="visible", timeout=t),
                explicit_timeout=VERIFY_TIMEOUT_MS, first_timeout=VERIFY_TIMEOUT_MS,
            )
            return locator, None

        if isinstance(action, WaitForCondition):
            locator, _ = await self._on_target(
                action.target, "wait_for",
                lambda sel, t: self.page.wait_for_selector(sel, state=action.state, timeout=t),
                explicit_timeout=WAIT_FOR_TIMEOUT_MS, first_timeout=WAIT_FOR_TIMEOUT_MS,
            )
            return locator, None

        if isinstance(action, WaitForDuration):
            await self._engine_call(self.page.wait_for_timeout(action.seconds * 1000), f"Wait {action.seconds}s")
            if self.verbose:
                print(f"  → Waited {action.seconds}s")
            return None, None

        if isinstance(action, Conditional):
            if depth > MAX_CONDITIONAL_DEPTH:
                raise StepFailure(f"Conditional steps nested deeper than {MAX_CONDITIONAL_DEPTH} levels")
            if not await self.probe(action.condition, action.probe):
                if self.verbose:
                    print("  → Condition not met; nested step skipped")
                return None, MARKER_CONDITION_NOT_MET
            return await self.perform(action.action, variables, depth=depth + 1)

        if isinstance(action, Unknown):
            if self.verbose:
                print(f"  → [WARN] Unrecognized step type ({action.reason}), treated as no-op")
            return None, MARKER_UNRECOGNIZED

        raise StepFailure(f"Unsupported action: {action!r}")

    async def probe(self, condition, mode: str) -> bool:
        """Bounded existence/visibility check. Never raises."""
        if isinstance(condition, Explicit):
            candidates = [condition.locator]
        else:
            candidates = self.resolver.resolve(condition.hint, "probe")
        for sel in candidates:
            try:
                loc = self.page.locator(sel)
                if mode == "visible":
                    found = await asyncio.wait_for(loc.first.is_visible(), PROBE_TIMEOUT_MS / 1000)
                else:
                    found = (await asyncio.wait_for(loc.count(), PROBE_TIMEOUT_MS / 1000)) > 0
                if found:
                    return True
            except Exception:
                continue
        return False

    async def capture_screenshot(self) -> str:
        try:
            shot = await self.page.screenshot(full_page=True, type="jpeg", quality=50)
        except Exception as e:
            raise EvidenceCaptureFailure(f"Failed to capture screenshot: {e}") from e
        return "data:image/jpeg;base64," + base64.b64encode(shot).decode("ascii")

    async def _navigate(self, url: str) -> str:
        if not url.lower().startswith(("http://", "https://")):
            current = ""
            try:
                current = self.page.url
            except Exception:
                pass
            base = current if isinstance(current, str) and current.startswith("http") else (self.base_url or "")
            url = urljoin(base, url)
        await self._engine_call(
            self.page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS),
            f"Navigation to {url}",
        )
        if self.verbose:
            print(f"  → Navigated to: {url}")
        return url

    async def _engine_call(self, awaitable, what: str):
        try:
            return await awaitable
        except PlaywrightTimeoutError as e:
            raise ActionTimeout(f"{what} timed out") from e
        except PlaywrightError as e:
            reason = (str(e).splitlines() or ["engine error"])[0]
            raise EngineFailure(f"{what} failed: {reason}") from e

    async def _on_target(self, target, kind: str, op, explicit_timeout: int = EXPLICIT_TIMEOUT_MS,
                         first_timeout: int = CANDIDATE_TIMEOUT_MS):
        """Run op against the target. Returns (locator, op result).

        Explicit locators are used as-is. Implied hints are resolved into
        candidates that are tried strictly in order; the first success wins.
        """
        if isinstance(target, Explicit):
            result = await self._engine_call(op(target.locator, explicit_timeout), f'{VERBS[kind]} "{target.locator}"')
            if self.verbose:
                print(f"  → {VERBS[kind]}: {target.locator}")
            return target.locator, result

        hint = self.resolver.sanitize(target.hint, kind)
        candidates = self.resolver.candidates(hint, kind)
        for i, sel in enumerate(candidates):
            found, result = await self._try_candidate(op, sel, first_timeout if i == 0 else CANDIDATE_TIMEOUT_MS, kind, hint)
            if not found:
                continue
            if self.verbose:
                print(f"  → {VERBS[kind]}: {sel}")
            return sel, result

        if self.repair is not None:
            for sel in await self.repair.suggest(self.page, hint, kind, candidates):
                found, result = await self._try_candidate(op, sel, CANDIDATE_TIMEOUT_MS, kind, hint)
                if not found:
                    continue
                if self.verbose:
                    print(f"  🔧 {VERBS[kind]} via repaired selector: {sel}")
                return sel, result

        raise ResolutionFailure(hint, kind)

    async def _try_candidate(self, op, sel: str, timeout: int, kind: str, hint: str):
        """Returns (found, op result). A miss or an unparsable selector moves on to the next candidate."""
        try:
            return True, await self._engine_call(op(sel, timeout), f'{VERBS[kind]} "{hint}"')
        except ActionTimeout:
            return False, None
        except EngineFailure as e:
            if is_selector_error(e.__cause__):
                return False, None
            raise
