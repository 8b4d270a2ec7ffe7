import re

# Filler words removed from an unquoted hint before candidates are generated
DEFAULT_STOP_WORDS = {
    "click": ["click", "press", "tap", "button", "link", "on", "the", "menu", "icon"],
    "fill": ["field", "input", "box", "the"],
    "store": ["store", "save", "capture", "remember", "text", "value", "from", "of", "the"],
    "verify": ["verify", "check", "assert", "should see", "expect", "that", "the", "is", "visible"],
    "wait_for": [
        "wait", "for", "until", "to", "be", "is", "appears", "appear", "visible",
        "disappears", "disappear", "hidden", "gone", "removed", "detached", "attached",
        "present", "exists", "exist", "the", "element",
    ],
    "probe": ["the", "element", "is"],
}

QUOTED_PATTERNS = [
    re.compile(r'"([^"]*)"'),
    re.compile(r"“([^”]*)”"),
    re.compile(r"(?<!\w)'(.+?)'(?!\w)"),
]

IDENTIFIER = re.compile(r"^[A-Za-z_][\w-]*$")


def _nests(text: str) -> bool:
    """True if the double quotes inside text pair up as opener (after a space) then closer."""
    depth = 0
    for i, ch in enumerate(text):
        if ch != '"':
            continue
        if i == 0 or text[i - 1].isspace():
            depth += 1
        else:
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def outer_quoted(hint: str) -> str | None:
    """Text between the first and last double quote, when the quotes inside it nest."""
    first, last = hint.find('"'), hint.rfind('"')
    if last <= first:
        return None
    inner = hint[first + 1:last]
    return inner if _nests(inner) else None


def _q(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class SelectorResolver:
    """Turns a free-text hint into an ordered list of locator candidates.

    Pure: never touches the page. Click, fill, store, verify, wait_for and
    probe each have their own candidate templates.
    """

    def __init__(self, stop_words: dict[str, list[str]] | None = None):
        self.stop_words = {k: list(v) for k, v in DEFAULT_STOP_WORDS.items()}
        for kind, words in (stop_words or {}).items():
            self.stop_words[kind] = list(words)

    def sanitize(self, hint: str, kind: str) -> str:
        """Quoted text is taken literally; otherwise the kind's stop words are stripped."""
        quoted = outer_quoted(hint)
        if quoted is not None:
            return quoted.strip()
        for pattern in QUOTED_PATTERNS:
            m = pattern.search(hint)
            if m:
                return m.group(1).strip()
        text = hint
        for word in self.stop_words.get(kind, []):
            text = re.sub(rf"\b{re.escape(word)}\b", "", text, flags=re.I)
        text = re.sub(r"\s+", " ", text)
        return text.strip().strip("\"'`“”").strip()

    def candidates(self, hint: str, kind: str) -> list[str]:
        """Candidates for an already sanitized hint, in the order they must be tried."""
        h = _q(hint)
        ident = bool(IDENTIFIER.match(hint))
        if kind == "click":
            cands = [
                f'text="{h}"',
                f'[aria-label="{h}"]',
                f'button:has-text("{h}")',
                f'a:has-text("{h}")',
                f'[role="button"]:has-text("{h}")',
                f'input[type="submit"][value="{h}"]',
            ]
            if ident:
                cands += [f"#{hint}", f".{hint}"]
            return cands
        if kind == "fill":
            if not hint:
                return ["input:visible", "textarea:visible"]
            return [
                f'input[placeholder*="{h}" i]',
                f'input[name*="{h}" i]',
                f'textarea[placeholder*="{h}" i]',
                f'input[aria-label*="{h}" i]',
                f'textarea[name*="{h}" i]',
                "input:visible",
            ]
        if kind == "store":
            cands = []
            if hint and '"' not in hint:
                cands.append(hint)
            cands += [f'[data-testid="{h}"]']
            if ident:
                cands.append(f"#{hint}")
            cands += [f'[name="{h}"]', f'[aria-label="{h}"]', f'text="{h}"']
            return cands
        if kind in ("verify", "wait_for"):
            return [f'text="{h}"', f"text={hint}"]
        if kind == "probe":
            return [f'text="{h}"', f'[aria-label="{h}"]', f"text={hint}"]
        raise ValueError(f"No candidate templates for action kind: {kind}")

    def resolve(self, hint: str, kind: str) -> list[str]:
        return self.candidates(self.sanitize(hint, kind), kind)
