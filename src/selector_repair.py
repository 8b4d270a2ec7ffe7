import asyncio
import base64
import json

import story_agent


async def build_element_inventory(page, limit: int = 100) -> dict:
    """Collect lightweight element inventory to give the repair agent page context."""
    inventory: dict[str, list] = {
        "testids": [],
        "aria_labels": [],
        "buttons": [],
        "links": [],
        "menuitems": [],
    }

    async def collect_attr(selector: str, attr: str, key: str):
        try:
            els = await page.query_selector_all(selector)
            for el in els[:limit]:
                try:
                    v = await el.get_attribute(attr)
                    if v and v not in inventory[key]:
                        inventory[key].append(v)
                except Exception:
                    continue
        except Exception:
            pass

    async def collect_text(selector: str, key: str):
        try:
            els = await page.query_selector_all(selector)
            for el in els[:limit]:
                try:
                    txt = (await el.inner_text()).strip()
                    if txt and txt not in inventory[key]:
                        inventory[key].append(txt)
                except Exception:
                    continue
        except Exception:
            pass

    await collect_attr("[data-testid]", "data-testid", "testids")
    await collect_attr("[aria-label]", "aria-label", "aria_labels")
    await collect_text("button, [role='button']", "buttons")
    await collect_text("a[href], [role='link']", "links")
    await collect_text("[role='menuitem']", "menuitems")
    return inventory


def parse_suggestions(raw: str) -> list[str]:
    body = raw.strip()
    if "```json" in body:
        body = body.split("```json")[1].split("```")[0].strip()
    elif "```" in body:
        body = body.split("```")[1].split("```")[0].strip()
    try:
        arr = json.loads(body)
    except json.JSONDecodeError:
        return []
    if not isinstance(arr, list):
        return []
    return [s for s in arr if isinstance(s, str) and s]


class SelectorRepair:
    """Ask a Bedrock-hosted model for alternative locators once every generated candidate failed."""

    def __init__(self, model_id: str, region: str, max_suggestions: int = 3, verbose: bool = False):
        self.model_id = model_id
        self.region = region
        self.max_suggestions = max_suggestions
        self.verbose = verbose

    def build_prompt(self, hint: str, kind: str, url: str, tried: list[str], inventory: dict) -> str:
        return (
            f"You are a test selector repair assistant. A test step wanted to {kind} the element described as \"{hint}\", "
            f"but none of the generated selectors matched. Propose up to {self.max_suggestions} alternative Playwright selectors.\n"
            "Rules: Only output a JSON array of strings; each must be a CSS selector, xpath= selector or text= selector. No prose.\n"
            "Prefer stable selectors: data-testid > aria-label > id > visible text. Avoid fragile CSS selectors.\n\n"
            f"Current URL: {url}\n"
            f"Already tried: {json.dumps(tried)}\n"
            f"Available testids: {json.dumps(inventory.get('testids', []), indent=2)}\n"
            f"Available aria-labels: {json.dumps(inventory.get('aria_labels', []), indent=2)}\n"
            f"Available buttons (by text): {json.dumps(inventory.get('buttons', []), indent=2)}\n"
            f"Available links (by text): {json.dumps(inventory.get('links', []), indent=2)}\n"
            f"Available menuitems (by text): {json.dumps(inventory.get('menuitems', []), indent=2)}\n"
        )

    async def suggest(self, page, hint: str, kind: str, tried: list[str]) -> list[str]:
        """Return suggested locators, or [] on any failure."""
        try:
            inventory = await build_element_inventory(page)
            img_payload = []
            try:
                shot = await page.screenshot(full_page=True, type="jpeg", quality=70)
                img_payload = [{"media_type": "image/jpeg", "data_base64": base64.b64encode(shot).decode("ascii")}]
            except Exception as e:
                if self.verbose:
                    print(f"⚠️ Could not capture repair screenshot: {e}")
            prompt = self.build_prompt(hint, kind, page.url, tried, inventory)
            if self.verbose:
                print(f"🔧 Repairing selector for \"{hint}\" ({'screenshot + inventory' if img_payload else 'inventory only'})")
            if img_payload:
                raw = await asyncio.to_thread(
                    story_agent.bedrock_invoke_claude_multimodal, prompt, img_payload, self.model_id, self.region, self.verbose
                )
            else:
                raw = await asyncio.to_thread(
                    story_agent.bedrock_invoke_claude, prompt, self.model_id, self.region, self.verbose
                )
            suggestions = [s for s in parse_suggestions(raw) if s not in tried][: self.max_suggestions]
            if self.verbose:
                print(f"🔧 Repair suggestions: {suggestions}")
            return suggestions
        except Exception as e:
            if self.verbose:
                print(f"🔧 Repair error: {e}")
            return []
