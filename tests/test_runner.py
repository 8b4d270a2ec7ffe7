import os
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import runner
from page_fakes import make_page
from run_config import RunConfig
from step_results import PASS, PENDING, CaseResult


def fake_playwright(page):
    """Wire async_playwright() -> browser -> context -> page for one run."""
    browser = MagicMock(name="browser")
    context = MagicMock(name="context")
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    p = MagicMock(name="playwright")
    p.chromium.launch = AsyncMock(return_value=browser)
    p.firefox.launch = AsyncMock(return_value=browser)
    manager = MagicMock(name="async_playwright")
    manager.return_value.__aenter__.return_value = p
    return manager, p, browser, context


CASES = [
    {"id": "TC-001", "title": "Open home", "steps": ['Verify "Home"']},
    {"id": "TC-002", "title": "Sign in", "steps": ['Click "Sign in"']},
    {"id": "TC-003", "title": "Sign out", "steps": ['Click "Sign out"']},
]


class TestExecute(unittest.IsolatedAsyncioTestCase):
    async def test_completed_run(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager):
            run = await runner.execute(CASES, {}, "https://x.test/")

        self.assertEqual(run.status, "COMPLETED")
        self.assertEqual(run.summary["total"], 3)
        self.assertEqual(run.summary["passed"], 3)
        self.assertIsNotNone(run.completed_at)
        self.assertNotIn("error", run.to_dict())
        page.goto.assert_any_await("https://x.test/", wait_until="networkidle", timeout=30000)
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()

    async def test_initial_navigation_failure_is_run_fatal(self):
        page = make_page()
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager):
            run = await runner.execute(CASES, {}, "https://x.test/")

        self.assertEqual(run.status, "FAILED")
        self.assertIn("Timeout 30000ms exceeded", run.to_dict()["error"])
        self.assertEqual(run.test_cases, [])
        browser.close.assert_awaited_once()

    async def test_cleanup_errors_are_swallowed(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        context.close.side_effect = RuntimeError("already closed")
        browser.close.side_effect = RuntimeError("already closed")
        with patch("runner.async_playwright", manager):
            run = await runner.execute(CASES[:1], {}, "https://x.test/")

        self.assertEqual(run.status, "COMPLETED")
        browser.close.assert_awaited_once()

    async def test_remaining_cases_pending_after_mid_run_failure(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        first = CaseResult(case={"id": "TC-001", "title": "Open home", "steps": []})
        side_effect = [first, RuntimeError("Target page crashed")]
        with patch("runner.async_playwright", manager), \
                patch("runner.run_case", new_callable=AsyncMock, side_effect=side_effect):
            run = await runner.execute(CASES, {}, "https://x.test/")

        self.assertEqual(run.status, "FAILED")
        self.assertEqual(run.error, "Target page crashed")
        self.assertEqual([c.status for c in run.test_cases], [PASS, PENDING, PENDING])
        self.assertEqual(run.summary["pending"], 2)
        self.assertIsNone(run.to_dict()["test_cases"][1]["terminal_state"])

    async def test_non_mapping_case_does_not_escape(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager):
            run = await runner.execute([{"id": "A", "steps": ["Wait 0"]}, None], {}, "https://x.test/")

        self.assertEqual(run.status, "COMPLETED")
        self.assertEqual(len(run.test_cases), 2)
        self.assertEqual(run.test_cases[1].case, {"steps": [], "raw": None})

    async def test_non_mapping_case_left_pending_after_failure(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        first = CaseResult(case={"id": "A", "steps": []})
        with patch("runner.async_playwright", manager), \
                patch("runner.run_case", new_callable=AsyncMock, side_effect=[first, RuntimeError("crashed")]):
            run = await runner.execute([{"id": "A", "steps": []}, {"id": "B"}, "junk"], {}, "https://x.test/")

        self.assertEqual(run.status, "FAILED")
        self.assertEqual([c.status for c in run.test_cases], [PASS, PENDING, PENDING])
        self.assertEqual(run.test_cases[2].case["raw"], "junk")

    async def test_unusable_case_list_fails_the_run(self):
        run = await runner.execute(42, {}, "https://x.test/")

        self.assertEqual(run.status, "FAILED")
        self.assertEqual(run.test_cases, [])
        self.assertIsNotNone(run.completed_at)

    async def test_firefox_launched_without_chromium_args(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        config = {"browser": {"type": "firefox", "headless": True}}
        with patch("runner.async_playwright", manager):
            await runner.execute([], config, "https://x.test/")

        p.firefox.launch.assert_awaited_once_with(headless=True)
        p.chromium.launch.assert_not_called()

    async def test_headless_forced_without_display(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        config = {"browser": {"headless": False}}
        with patch("runner.async_playwright", manager), patch.dict(os.environ, {"FORCE_HEADLESS": "1"}):
            await runner.execute([], config, "https://x.test/")

        self.assertTrue(p.chromium.launch.await_args.kwargs["headless"])
        self.assertEqual(p.chromium.launch.await_args.kwargs["args"], runner.CHROMIUM_ARGS)

    async def test_context_uses_viewport_and_user_agent(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        config = {"browser": {"viewport": {"width": 800, "height": 600}, "user_agent": "UA"}}
        with patch("runner.async_playwright", manager):
            await runner.execute([], config, "https://x.test/")

        browser.new_context.assert_awaited_once_with(viewport={"width": 800, "height": 600}, user_agent="UA")

    async def test_accepts_run_config_instance(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager):
            run = await runner.execute(CASES[:1], RunConfig(), "https://x.test/")

        self.assertEqual(run.status, "COMPLETED")
        self.assertEqual(run.config, {})


class TestLogin(unittest.IsolatedAsyncioTestCase):
    AUTH = {
        "authentication": {
            "enabled": True,
            "loginUrl": "https://x.test/login",
            "username": "qa@x.test",
            "password": "secret",
        }
    }

    async def test_login_before_first_case(self):
        page = make_page()
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager):
            run = await runner.execute([], self.AUTH, "https://x.test/")

        self.assertEqual(run.status, "COMPLETED")
        self.assertEqual(page.goto.await_args_list[0].args[0], "https://x.test/login")
        page.fill.assert_any_await("input[type='email']", "qa@x.test", timeout=2000)
        page.fill.assert_any_await("input[type='password']", "secret", timeout=2000)
        page.click.assert_any_await("button[type='submit']", timeout=2000)

    async def test_totp_code_entered(self):
        page = make_page()
        config = {"authentication": dict(self.AUTH["authentication"], totp_secret="JBSWY3DPEHPK3PXP")}
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager), patch("runner.pyotp.TOTP") as totp:
            totp.return_value.now.return_value = "123456"
            await runner.execute([], config, "https://x.test/")

        totp.assert_called_once_with("JBSWY3DPEHPK3PXP")
        page.fill.assert_any_await("input[autocomplete='one-time-code']", "123456", timeout=2000)

    async def test_missing_credentials_fail_the_run(self):
        page = make_page()
        config = {"authentication": {"enabled": True, "loginUrl": "https://x.test/login"}}
        manager, p, browser, context = fake_playwright(page)
        with patch("runner.async_playwright", manager), patch.dict(os.environ, {}, clear=True):
            run = await runner.execute(CASES, config, "https://x.test/")

        self.assertEqual(run.status, "FAILED")
        self.assertIn("missing credentials: username, password", run.error)
        self.assertEqual(run.test_cases, [])
        browser.close.assert_awaited_once()

    async def test_fill_first_raises_when_nothing_matches(self):
        page = make_page(accept=lambda s: False)
        with self.assertRaises(runner.EngineFailure):
            await runner.fill_first(page, ["#a", "#b"], "x", "username")
        self.assertEqual(page.fill.await_count, 2)


if __name__ == "__main__":
    unittest.main()
