import unittest
from unittest.mock import AsyncMock, MagicMock

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from case_runner import NetworkLog
from page_fakes import called_selectors, make_page
from run_config import RunConfig
from selector_resolver import SelectorResolver
from step_actions import (
    Click,
    Conditional,
    Explicit,
    Fill,
    Implied,
    Navigate,
    Store,
    Unknown,
    Verify,
    WaitForCondition,
    WaitForDuration,
)
from step_executor import EXPLICIT_TIMEOUT_MS, SETTLE_DELAY_MS, VERIFY_TIMEOUT_MS, StepExecutor
from step_results import FAIL, MARKER_CONDITION_NOT_MET, MARKER_UNRECOGNIZED, PASS, NetworkLogEntry
from step_variables import VariableContext


class TestTargetResolution(unittest.IsolatedAsyncioTestCase):
    async def test_candidates_tried_in_order_until_one_succeeds(self):
        page = make_page(accept=lambda s: s == 'button:has-text("Submit")')
        executor = StepExecutor(page)

        result = await executor.execute(Click(Implied('Click "Submit"')), 0, 'Click "Submit"', VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertEqual(result.locator, 'button:has-text("Submit")')
        self.assertEqual(
            called_selectors(page.click),
            ['text="Submit"', '[aria-label="Submit"]', 'button:has-text("Submit")'],
        )

    async def test_explicit_locator_bypasses_resolver(self):
        page = make_page()
        resolver = MagicMock(wraps=SelectorResolver())
        executor = StepExecutor(page, resolver=resolver)

        result = await executor.execute(Click(Explicit("css=#go")), 0, "Click css=#go", VariableContext())

        self.assertEqual(result.status, PASS)
        page.click.assert_awaited_once_with("css=#go", timeout=EXPLICIT_TIMEOUT_MS)
        resolver.sanitize.assert_not_called()
        resolver.candidates.assert_not_called()
        resolver.resolve.assert_not_called()

    async def test_failure_names_hint_without_locator_syntax(self):
        page = make_page(accept=lambda s: False)
        executor = StepExecutor(page)

        result = await executor.execute(Click(Implied('Click "Checkout"')), 2, 'Click "Checkout"', VariableContext())

        self.assertEqual(result.status, FAIL)
        self.assertEqual(result.error, 'Could not find clickable element for: "Checkout"')
        self.assertNotIn("has-text", result.error)

    async def test_fill_failure_message(self):
        page = make_page(accept=lambda s: False)
        executor = StepExecutor(page)

        result = await executor.execute(Fill("bob", Implied('"Username"')), 0, "x", VariableContext())

        self.assertEqual(result.error, 'Could not find input field for target "Username"')

    async def test_verify_gives_first_candidate_the_long_timeout(self):
        page = make_page(accept=lambda s: s == "text=Welcome")
        executor = StepExecutor(page)

        result = await executor.execute(Verify(Implied('Verify "Welcome"')), 0, 'Verify "Welcome"', VariableContext())

        self.assertEqual(result.status, PASS)
        timeouts = [c.kwargs["timeout"] for c in page.wait_for_selector.call_args_list]
        self.assertEqual(timeouts, [VERIFY_TIMEOUT_MS, 2000])

    async def test_wait_for_passes_state(self):
        page = make_page()
        executor = StepExecutor(page)

        await executor.execute(WaitForCondition(Implied('"Loading"'), "hidden"), 0, "x", VariableContext())

        self.assertEqual(page.wait_for_selector.call_args.kwargs["state"], "hidden")

    async def test_closed_page_is_engine_failure_not_missing_element(self):
        page = make_page()
        page.click.side_effect = PlaywrightError("Target page, context or browser has been closed")
        executor = StepExecutor(page)

        result = await executor.execute(Click(Implied('Click "Go"')), 0, 'Click "Go"', VariableContext())

        self.assertEqual(result.status, FAIL)
        self.assertEqual(result.error, 'Click "Go" failed: Target page, context or browser has been closed')
        self.assertEqual(page.click.await_count, 1)

    async def test_unparsable_candidate_moves_on(self):
        page = make_page()

        async def click(selector, **kwargs):
            if selector == 'text="Go"':
                raise PlaywrightError('Error while parsing selector `text="Go"`')

        page.click.side_effect = click
        executor = StepExecutor(page)

        result = await executor.execute(Click(Implied('Click "Go"')), 0, 'Click "Go"', VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertEqual(result.locator, '[aria-label="Go"]')

    async def test_repair_suggestions_tried_after_candidates(self):
        page = make_page(accept=lambda s: s == '[data-testid="go"]')
        repair = MagicMock()
        repair.suggest = AsyncMock(return_value=['[data-testid="go"]'])
        executor = StepExecutor(page, repair=repair)

        result = await executor.execute(Click(Implied('Click "Go"')), 0, 'Click "Go"', VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertEqual(result.locator, '[data-testid="go"]')
        args = repair.suggest.await_args.args
        self.assertEqual(args[1:3], ("Go", "click"))


class TestActions(unittest.IsolatedAsyncioTestCase):
    async def test_store_strips_and_sets_variable(self):
        page = make_page(texts={"h1": "  Welcome, Bob \n"})
        variables = VariableContext()
        executor = StepExecutor(page)

        result = await executor.execute(Store(Implied('text from "h1"'), "title"), 0, "x", variables)

        self.assertEqual(result.status, PASS)
        self.assertEqual(variables.get("title"), "Welcome, Bob")

    async def test_conditional_not_met_skips_nested(self):
        page = make_page(visible=())
        executor = StepExecutor(page)
        action = Conditional(Implied('"Banner"'), "visible", Click(Implied('Click "Close"')))

        result = await executor.execute(action, 0, "x", VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertEqual(result.marker, MARKER_CONDITION_NOT_MET)
        page.click.assert_not_called()

    async def test_conditional_met_runs_nested(self):
        page = make_page(visible=('text="Banner"',))
        executor = StepExecutor(page)
        action = Conditional(Implied('"Banner"'), "visible", Click(Implied('Click "Close"')))

        result = await executor.execute(action, 0, "x", VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertIsNone(result.marker)
        self.assertEqual(called_selectors(page.click), ['text="Close"'])

    async def test_exists_probe_uses_count(self):
        page = make_page(visible=("css=#banner",))
        executor = StepExecutor(page)

        self.assertTrue(await executor.probe(Explicit("css=#banner"), "exists"))
        self.assertFalse(await executor.probe(Explicit("css=#other"), "exists"))

    async def test_unknown_is_pass_with_marker(self):
        page = make_page()
        executor = StepExecutor(page)

        result = await executor.execute(Unknown("Scroll a bit"), 0, "Scroll a bit", VariableContext())

        self.assertEqual(result.status, PASS)
        self.assertEqual(result.marker, MARKER_UNRECOGNIZED)
        self.assertEqual(result.action, "unknown")

    async def test_wait_for_duration(self):
        page = make_page()
        executor = StepExecutor(page)

        await executor.execute(WaitForDuration(1.5), 0, "Wait 1.5", VariableContext())

        self.assertEqual(page.wait_for_timeout.call_args_list[0].args[0], 1500)

    async def test_relative_navigation_joins_current_url(self):
        page = make_page(url="https://x.test/app/")
        executor = StepExecutor(page)

        result = await executor.execute(Navigate("/dashboard"), 0, "Go to /dashboard", VariableContext())

        self.assertEqual(result.locator, "https://x.test/dashboard")
        self.assertEqual(page.goto.await_args.args[0], "https://x.test/dashboard")

    async def test_relative_navigation_uses_base_url_off_http(self):
        page = make_page(url="about:blank")
        executor = StepExecutor(page, base_url="https://x.test/")

        await executor.execute(Navigate("/login"), 0, "x", VariableContext())

        self.assertEqual(page.goto.await_args.args[0], "https://x.test/login")

    async def test_navigation_timeout(self):
        page = make_page()
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")
        executor = StepExecutor(page)

        result = await executor.execute(Navigate("https://x.test/"), 0, "x", VariableContext())

        self.assertEqual(result.status, FAIL)
        self.assertEqual(result.error, "Navigation to https://x.test/ timed out")

    async def test_unexpected_error_becomes_fail(self):
        page = make_page()
        page.click.side_effect = RuntimeError("boom")
        executor = StepExecutor(page)

        result = await executor.execute(Click(Explicit("css=#go")), 0, "x", VariableContext())

        self.assertEqual(result.status, FAIL)
        self.assertEqual(result.error, "Unexpected error: boom")


class TestEvidence(unittest.IsolatedAsyncioTestCase):
    async def test_screenshot_attached_as_data_uri(self):
        page = make_page()
        executor = StepExecutor(page, RunConfig(capture_screenshots=True))

        result = await executor.execute(Click(Explicit("css=#go")), 0, "x", VariableContext())

        self.assertTrue(result.screenshot.startswith("data:image/jpeg;base64,"))

    async def test_no_screenshot_unless_enabled(self):
        page = make_page()
        executor = StepExecutor(page)

        result = await executor.execute(Click(Explicit("css=#go")), 0, "x", VariableContext())

        self.assertIsNone(result.screenshot)
        page.screenshot.assert_not_called()

    async def test_screenshot_failure_does_not_mask_step_error(self):
        page = make_page(accept=lambda s: False)
        page.screenshot.side_effect = RuntimeError("page crashed")
        executor = StepExecutor(page, RunConfig(capture_screenshots=True))

        result = await executor.execute(Click(Implied('Click "Save"')), 0, "x", VariableContext())

        self.assertEqual(result.status, FAIL)
        self.assertEqual(result.error, 'Could not find clickable element for: "Save"')
        self.assertIsNone(result.screenshot)

    async def test_screenshot_failure_keeps_pass(self):
        page = make_page()
        page.screenshot.side_effect = RuntimeError("page crashed")
        executor = StepExecutor(page, RunConfig(capture_screenshots=True))

        result = await executor.execute(Click(Explicit("css=#go")), 0, "x", VariableContext())

        self.assertEqual(result.status, PASS)

    async def test_settle_delay_after_every_step(self):
        page = make_page()
        executor = StepExecutor(page)

        await executor.execute(Unknown("noop"), 0, "noop", VariableContext())

        page.wait_for_timeout.assert_awaited_once_with(SETTLE_DELAY_MS)

    async def test_network_entries_drained_into_step(self):
        page = make_page()
        network = NetworkLog()
        network.entries.append(NetworkLogEntry("https://x.test/api", "GET", 200, "t", 12))
        executor = StepExecutor(page)

        result = await executor.execute(Unknown("noop"), 0, "noop", VariableContext(), network=network)

        self.assertEqual(len(result.network_logs), 1)
        self.assertEqual(result.network_logs[0].status, 200)
        self.assertEqual(network.entries, [])
        self.assertEqual(result.to_dict()["network_logs"][0]["url"], "https://x.test/api")


if __name__ == "__main__":
    unittest.main()
