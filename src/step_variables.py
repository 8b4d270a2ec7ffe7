import re

VARIABLE_TOKEN = re.compile(r"\{(\w+)\}")


class VariableContext:
    """Values captured by Store steps, scoped to one test case."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def set(self, name: str, value) -> None:
        self._values[name] = str(value)

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def clear(self) -> None:
        self._values.clear()

    def substitute(self, text: str) -> str:
        """Replace every {name} with its stored value. Unknown names stay verbatim."""
        if "{" not in text:
            return text

        def _replace(m: re.Match) -> str:
            value = self._values.get(m.group(1))
            return m.group(0) if value is None else value

        return VARIABLE_TOKEN.sub(_replace, text)
