"""Classify a free-text test step into an Action.

Matchers run in a fixed order and the first one that returns an Action wins.
The order matters because one sentence can satisfy several keyword patterns
("Wait for 'Saved' to be visible" also contains "visible"; "If ... then
Click ..." also contains "click").
"""

import re

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

MAX_CONDITIONAL_DEPTH = 3
DEFAULT_WAIT_SECONDS = 2.0

LOCATOR_PREFIX = re.compile(r"^(?:css|xpath|text)=", re.I)
UNQUOTED_LOCATOR = re.compile(
    r"(?<![\w\"'])((?:css|xpath)=\S+|text=.+?(?=\s*[,;]|\s+(?:then|as|into|to|and|with)\b|\s*\.?\s*$))",
    re.I,
)
QUOTED_SEGMENT = re.compile(r'"([^"]*)"|“([^”]*)”|(?<!\w)\'(.+?)\'(?!\w)')

STORE = re.compile(
    r"^\s*(?:store|save|capture|remember)\b\s*(?P<source>.+)\s+(?:as|into)\s+"
    r"(?P<name>[\"'{]?\w+[\"'}]?)\s*\.?\s*$",
    re.I,
)
CONDITIONAL = re.compile(
    r"^\s*if\s+(?P<cond>.+?)\s+(?:is\s+)?(?P<probe>exists|exist|present|visible|displayed)\s*,?\s*"
    r"then\s+(?P<nested>.+)$",
    re.I,
)
WAIT_FOR = re.compile(r"\bwait\s+(?:for|until)\s+(?P<target>.+)$", re.I)
DURATION = re.compile(
    r"\bwait\s+(?:for\s+)?(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>ms|milliseconds?|s|secs?|seconds?)?(?!\S)",
    re.I,
)
CLICK = re.compile(r"\b(?:click|press|tap)\b", re.I)
FILL = re.compile(r"\b(?:type|enter|fill)\b", re.I)
FILL_INTO = re.compile(
    r"\b(?:type|enter|fill)\s+(?:in\s+)?(?P<value>\"[^\"]*\"|“[^”]*”|'[^']*'|.+?)\s+(?:in|into|to)\s+(?P<target>.+)$",
    re.I,
)
FILL_WITH = re.compile(r"\bfill\s+(?:in\s+)?(?P<target>.+?)\s+with\s+(?P<value>.+)$", re.I)
NAVIGATE = re.compile(r"\b(?:navigate|go to|visit|open)\b", re.I)
ABSOLUTE_URL = re.compile(r"https?://[^\s\"'“”<>]+", re.I)
RELATIVE_URL = re.compile(r"(?:^|[\s\"'“])(/[^\s\"'“”<>]*)")
VERIFY = re.compile(r"\b(?:verify|check|assert|should see|expect)\b", re.I)
WAIT = re.compile(r"\bwait\b", re.I)
NUMBER = re.compile(r"\d+(?:\.\d+)?")


def find_explicit_locator(fragment: str) -> str | None:
    """Return an author-supplied css=/xpath=/text= locator inside fragment, if any."""
    for m in QUOTED_SEGMENT.finditer(fragment):
        content = next(g for g in m.groups() if g is not None)
        if LOCATOR_PREFIX.match(content.strip()):
            return content.strip()
    m = UNQUOTED_LOCATOR.search(fragment)
    if m:
        return m.group(1).rstrip(".,;")
    return None


def parse_target(fragment: str) -> Explicit | Implied:
    locator = find_explicit_locator(fragment)
    if locator:
        return Explicit(locator)
    return Implied(fragment.strip())


def literal_value(fragment: str) -> str:
    text = fragment.strip()
    for left, right in (('"', '"'), ("'", "'"), ("“", "”")):
        if len(text) >= 2 and text.startswith(left) and text.endswith(right):
            return text[1:-1]
    return text


def _match_store(text: str, depth: int):
    m = STORE.match(text)
    if not m:
        return None
    name = m.group("name").strip("\"'{}")
    return Store(source=parse_target(m.group("source")), name=name)


def _match_conditional(text: str, depth: int):
    m = CONDITIONAL.match(text)
    if not m:
        return None
    probe = "visible" if m.group("probe").lower() in ("visible", "displayed") else "exists"
    nested_text = m.group("nested").strip()
    if depth + 1 > MAX_CONDITIONAL_DEPTH:
        nested = Unknown(nested_text, reason="conditional nesting too deep")
    else:
        nested = classify(nested_text, depth=depth + 1)
    return Conditional(condition=parse_target(m.group("cond")), probe=probe, action=nested)


def _match_wait_for(text: str, depth: int):
    if DURATION.search(text):
        return None
    m = WAIT_FOR.search(text)
    if not m:
        return None
    lower = text.lower()
    if re.search(r"\b(?:disappears?|hidden|gone|invisible|not visible)\b", lower):
        state = "hidden"
    elif re.search(r"\b(?:removed|detached)\b", lower):
        state = "detached"
    elif re.search(r"\b(?:exists?|present|attached)\b", lower):
        state = "attached"
    else:
        state = "visible"
    return WaitForCondition(target=parse_target(m.group("target")), state=state)


def _match_click(text: str, depth: int):
    if not CLICK.search(text):
        return None
    return Click(target=parse_target(text))


def _match_fill(text: str, depth: int):
    if not FILL.search(text):
        return None
    if re.match(r"\s*fill\b", text, re.I):
        m = FILL_WITH.search(text) or FILL_INTO.search(text)
    else:
        m = FILL_INTO.search(text)
    if m:
        return Fill(value=literal_value(m.group("value")), target=parse_target(m.group("target")))
    # No target clause: fill the first visible input
    quoted = QUOTED_SEGMENT.search(text)
    if quoted:
        value = next(g for g in quoted.groups() if g is not None)
    else:
        value = re.sub(r"\b(?:type|enter|fill|input)\b", "", text, flags=re.I).strip()
    return Fill(value=value, target=Implied(""))


def _match_navigate(text: str, depth: int):
    if not NAVIGATE.search(text):
        return None
    m = ABSOLUTE_URL.search(text)
    if m:
        return Navigate(url=m.group(0).rstrip(".,;)"))
    m = RELATIVE_URL.search(text)
    if m:
        return Navigate(url=m.group(1).rstrip(".,;)"))
    return None


def _match_verify(text: str, depth: int):
    if not VERIFY.search(text):
        return None
    return Verify(target=parse_target(text))


def _match_wait(text: str, depth: int):
    if not WAIT.search(text):
        return None
    m = DURATION.search(text)
    if m:
        amount, unit = float(m.group("amount")), (m.group("unit") or "s").lower()
    else:
        n = NUMBER.search(text)
        amount, unit = (float(n.group(0)) if n else DEFAULT_WAIT_SECONDS), "s"
    seconds = amount / 1000 if unit.startswith("m") else amount
    return WaitForDuration(seconds=seconds)


MATCHERS = [
    _match_store,
    _match_conditional,
    _match_wait_for,
    _match_click,
    _match_fill,
    _match_navigate,
    _match_verify,
    _match_wait,
]


def classify(step_text, depth: int = 0):
    """Return the Action for one step. Unrecognised input yields Unknown, never an error."""
    text = "" if step_text is None else str(step_text).strip()
    if not text:
        return Unknown(text, reason="empty step")
    for matcher in MATCHERS:
        action = matcher(text, depth)
        if action is not None:
            return action
    return Unknown(text)
