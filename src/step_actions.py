from dataclasses import dataclass


# Targets

@dataclass(frozen=True)
class Explicit:
    """Author-supplied locator (css=, xpath=, text=). Used as-is."""
    locator: str


@dataclass(frozen=True)
class Implied:
    """Free-text hint that must go through the selector resolver."""
    hint: str


# Actions

@dataclass(frozen=True)
class Navigate:
    url: str
    kind = "navigate"


@dataclass(frozen=True)
class Click:
    target: Explicit | Implied
    kind = "click"


@dataclass(frozen=True)
class Fill:
    value: str
    target: Explicit | Implied
    kind = "fill"


@dataclass(frozen=True)
class Store:
    source: Explicit | Implied
    name: str
    kind = "store"


@dataclass(frozen=True)
class Conditional:
    condition: Explicit | Implied
    probe: str  # "exists" | "visible"
    action: object
    kind = "conditional"


@dataclass(frozen=True)
class WaitForCondition:
    target: Explicit | Implied
    state: str  # "visible" | "hidden" | "attached" | "detached"
    kind = "wait_for"


@dataclass(frozen=True)
class WaitForDuration:
    seconds: float
    kind = "wait"


@dataclass(frozen=True)
class Verify:
    target: Explicit | Implied
    kind = "verify"


@dataclass(frozen=True)
class Unknown:
    text: str
    reason: str = "unrecognized"
    kind = "unknown"
