"""`item://{id}` 형태의 URI 템플릿을 컴파일하고 매칭해요.

`{name}` 자리표시자는 비어 있지 않은 경로 세그먼트 하나(`/` 미포함)에만
매칭되고, 퍼센트 디코딩된 값으로 바인딩돼요.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote

from libs.common.errors import ConfigurationError

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(slots=True, frozen=True)
class UriTemplate:
    template: str
    placeholders: tuple[str, ...]
    pattern: re.Pattern[str]
    literal_length: int
    prefix_length: int

    @classmethod
    def compile(cls, template: str) -> "UriTemplate":
        if not template:
            raise ConfigurationError("URI 템플릿이 비어 있어요.")

        parts: list[str] = []
        placeholders: list[str] = []
        literal_length = 0
        cursor = 0
        for match in _PLACEHOLDER.finditer(template):
            literal = template[cursor : match.start()]
            parts.append(re.escape(literal))
            literal_length += len(literal)
            name = match.group(1)
            if name in placeholders:
                raise ConfigurationError(f"URI 템플릿에 같은 자리표시자가 두 번 있어요: {{{name}}} in {template}")
            placeholders.append(name)
            parts.append(f"(?P<{name}>[^/]+)")
            cursor = match.end()
        tail = template[cursor:]
        parts.append(re.escape(tail))
        literal_length += len(tail)

        first = _PLACEHOLDER.search(template)
        prefix = template if first is None else template[: first.start()]

        stripped = _PLACEHOLDER.sub("", template)
        if "{" in stripped or "}" in stripped:
            raise ConfigurationError(f"URI 템플릿 문법이 올바르지 않아요: {template}")

        return cls(
            template=template,
            placeholders=tuple(placeholders),
            pattern=re.compile("".join(parts)),
            literal_length=literal_length,
            prefix_length=len(prefix),
        )

    @property
    def specificity(self) -> tuple[int, int, int]:
        """첫 자리표시자 앞의 리터럴 접두사가 길수록 더 구체적이에요.

        접두사가 같으면 전체 리터럴 길이, 그다음 자리표시자 수로 가려요.
        """
        return (self.prefix_length, self.literal_length, -len(self.placeholders))

    def match(self, uri: str) -> dict[str, str] | None:
        matched = self.pattern.fullmatch(uri)
        if matched is None:
            return None
        return {name: unquote(value) for name, value in matched.groupdict().items()}

    def expand(self, **values: str) -> str:
        return _PLACEHOLDER.sub(lambda m: values[m.group(1)], self.template)
