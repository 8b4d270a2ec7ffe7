class StepFailure(AssertionError):
    """A step could not be carried out. The step is recorded as FAIL and the case aborts."""


FAILURE_TEMPLATES = {
    "click": 'Could not find clickable element for: "{hint}"',
    "fill": 'Could not find input field for target "{hint}"',
    "store": 'Could not read text from "{hint}"',
    "verify": 'Assertion failed: could not find text "{hint}"',
    "wait_for": 'Timed out waiting for "{hint}"',
}


class ResolutionFailure(StepFailure):
    def __init__(self, hint: str, kind: str):
        self.hint = hint
        self.kind = kind
        template = FAILURE_TEMPLATES.get(kind, 'Could not resolve element for "{hint}"')
        super().__init__(template.format(hint=hint))


class ActionTimeout(StepFailure):
    pass


class EngineFailure(StepFailure):
    pass


class CaseTimeout(Exception):
    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        limit = f"{timeout_ms}ms" if timeout_ms < 1000 else f"{timeout_ms // 1000}s"
        super().__init__(f"Test case execution timed out (>{limit})")


class EvidenceCaptureFailure(Exception):
    """Screenshot or network capture failed. Never fails a step."""
