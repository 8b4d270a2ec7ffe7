import time
import uuid

import pyotp
from playwright.async_api import async_playwright

from case_runner import run_case
from run_config import AuthConfig, RunConfig
from selector_repair import SelectorRepair
from step_errors import EngineFailure
from step_executor import StepExecutor
from step_results import CaseResult, RunResult, now_iso

NAVIGATION_TIMEOUT_MS = 30000
LOGIN_FIELD_TIMEOUT_MS = 2000
LOGIN_SETTLE_TIMEOUT_MS = 10000

USERNAME_SELECTORS = [
    "input[type='email']",
    "input[type='text'][name*='email']",
    "input[name='username']",
    "input[id='email']",
    "#username",
    "input[placeholder*='email' i]",
    "input[placeholder*='user' i]",
]
PASSWORD_SELECTORS = [
    "input[type='password']",
    "#password",
    "input[name='password']",
]
SUBMIT_SELECTORS = [
    "button[type='submit']",
    "button:has-text('Log in')",
    "button:has-text('Sign in')",
    "input[type='submit']",
]
OTP_SELECTORS = [
    "input[autocomplete='one-time-code']",
    "#otp",
    "input[name*='otp']",
    "input[id*='otp']",
    "input[name*='code']",
    "input[id*='code']",
]
CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


async def fill_first(page, selectors: list[str], value: str, label: str, verbose: bool = False) -> str:
    for sel in selectors:
        try:
            await page.fill(sel, value, timeout=LOGIN_FIELD_TIMEOUT_MS)
            if verbose:
                print(f"🔐 Filled {label} via {sel}")
            return sel
        except Exception:
            continue
    raise EngineFailure(f"Unable to fill {label}")


async def click_first(page, selectors: list[str], label: str, verbose: bool = False) -> str:
    for sel in selectors:
        try:
            await page.click(sel, timeout=LOGIN_FIELD_TIMEOUT_MS)
            if verbose:
                print(f"🔐 Clicked {label} via {sel}")
            return sel
        except Exception:
            continue
    raise EngineFailure(f"Unable to click {label}")


async def settle(page) -> None:
    try:
        await page.wait_for_load_state("networkidle", timeout=LOGIN_SETTLE_TIMEOUT_MS)
    except Exception:
        await page.wait_for_timeout(2000)


async def perform_login(page, auth: AuthConfig, verbose: bool = False) -> None:
    missing = [name for name, value in (("username", auth.username), ("password", auth.password)) if not value]
    if missing:
        raise EngineFailure(f"Authentication enabled but missing credentials: {', '.join(missing)}")

    if verbose:
        print(f"🔐 Performing login at {auth.login_url}")
    await page.goto(auth.login_url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)
    await fill_first(page, USERNAME_SELECTORS, auth.username, "username/email", verbose=verbose)
    await fill_first(page, PASSWORD_SELECTORS, auth.password, "password", verbose=verbose)
    await click_first(page, SUBMIT_SELECTORS, "submit", verbose=verbose)
    await settle(page)

    if auth.totp_secret:
        code = pyotp.TOTP(auth.totp_secret).now()
        await fill_first(page, OTP_SELECTORS, code, "one-time code", verbose=verbose)
        await click_first(page, SUBMIT_SELECTORS, "one-time code submit", verbose=verbose)
        await settle(page)

    if verbose:
        print("🔐 Login complete")


async def _close_quietly(resource, label: str, verbose: bool = False) -> None:
    if resource is None:
        return
    try:
        await resource.close()
    except Exception as e:
        if verbose:
            print(f"⚠️ Ignored error closing {label}: {e}")


async def run_test_suite(test_cases: list[dict], config: RunConfig, url: str, run: RunResult,
                         verbose: bool = False) -> RunResult:
    """Drive every case through one browser session. Errors propagate after cleanup."""
    async with async_playwright() as p:
        browser = None
        context = None
        try:
            browser_type = p.firefox if config.browser_type == "firefox" else p.chromium
            headless = config.effective_headless
            if headless and not config.headless:
                print("⚠️ No display available; forcing headless mode")
            if verbose:
                print(f"→ Launching {config.browser_type} browser (headless: {headless})")
            launch_args = {"headless": headless}
            if config.browser_type == "chromium":
                launch_args["args"] = CHROMIUM_ARGS
            browser = await browser_type.launch(**launch_args)
            context = await browser.new_context(viewport=config.viewport, user_agent=config.user_agent)
            page = await context.new_page()

            if config.auth is not None:
                await perform_login(page, config.auth, verbose=verbose)

            if verbose:
                print(f"→ Navigating to {url}")
            await page.goto(url, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS)

            repair = None
            if config.repair_ready:
                repair = SelectorRepair(config.model_id, config.region, verbose=verbose)
                if verbose:
                    print(f"🔧 Repair mode ENABLED (model={config.model_id}, region={config.region})")
            executor = StepExecutor(page, config, repair=repair, base_url=url, verbose=verbose)

            for tc in test_cases:
                if verbose:
                    print(f"\n===== Running Test: {tc.get('id', '')} {tc.get('title', 'Unnamed')} =====")
                result = await run_case(page, tc, config, executor=executor, verbose=verbose)
                run.test_cases.append(result)
                if result.status == "PASS":
                    print(f"✓ Passed: {tc.get('title', 'Unnamed')}")
                else:
                    err = result.error or ""
                    err_excerpt = err if len(err) < 300 else (err[:297] + "...")
                    print(f"✖ Failed: {tc.get('title', 'Unnamed')} — {err_excerpt}")
        finally:
            await _close_quietly(context, "browser context", verbose)
            await _close_quietly(browser, "browser", verbose)
            if verbose:
                print("→ Browser closed")
    return run


def as_case(tc) -> dict:
    """Copy a case mapping. Anything else becomes an empty case that keeps the raw value."""
    if isinstance(tc, dict):
        return dict(tc)
    return {"steps": [], "raw": tc}


async def execute(test_cases: list[dict], config: dict | RunConfig | None, url: str, verbose: bool = False) -> RunResult:
    """Run every test case against url. Never raises: failures end up in the returned RunResult."""
    started = time.monotonic()
    raw_config = config.raw if isinstance(config, RunConfig) else (config or {})
    run = RunResult(run_id=str(uuid.uuid4()), url=url, config=raw_config, started_at=now_iso())
    cases: list[dict] = []
    try:
        cases = [as_case(tc) for tc in (test_cases or [])]
        cfg = config if isinstance(config, RunConfig) else RunConfig.from_dict(config)
        await run_test_suite(cases, cfg, url, run, verbose=verbose)
        run.status = "COMPLETED"
    except Exception as e:
        run.status = "FAILED"
        run.error = str(e) or type(e).__name__
        print(f"✖ Run failed: {run.error}")
        if run.test_cases:
            # Cases after the failure never ran
            run.test_cases.extend(CaseResult(case=tc, pending=True) for tc in cases[len(run.test_cases):])
    run.completed_at = now_iso()
    run.duration_ms = int((time.monotonic() - started) * 1000)
    return run
