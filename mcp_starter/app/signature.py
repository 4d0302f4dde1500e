from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

Handler = Callable[..., Any]

CONTEXT_PARAMETER = "ctx"


@dataclass(slots=True, frozen=True)
class HandlerSignature:
    parameters: tuple[str, ...]
    required: frozenset[str]
    accepts_context: bool
    accepts_var_kwargs: bool

    def bind(self, arguments: dict[str, Any], context: Any) -> dict[str, Any]:
        """핸들러가 선언한 인자만 골라 키워드 인자로 만들어요."""
        if self.accepts_var_kwargs:
            kwargs = {key: value for key, value in arguments.items() if key != CONTEXT_PARAMETER}
        else:
            kwargs = {key: arguments[key] for key in self.parameters if key in arguments}
        if self.accepts_context:
            kwargs[CONTEXT_PARAMETER] = context
        return kwargs


def inspect_handler(handler: Handler) -> HandlerSignature:
    signature = inspect.signature(handler)
    parameters: list[str] = []
    required: set[str] = set()
    accepts_context = False
    accepts_var_kwargs = False
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_KEYWORD:
            accepts_var_kwargs = True
            continue
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            continue
        if parameter.name == CONTEXT_PARAMETER:
            accepts_context = True
            continue
        parameters.append(parameter.name)
        if parameter.default is inspect.Parameter.empty:
            required.add(parameter.name)
    return HandlerSignature(
        parameters=tuple(parameters),
        required=frozenset(required),
        accepts_context=accepts_context,
        accepts_var_kwargs=accepts_var_kwargs,
    )


async def call_handler(
    handler: Handler,
    arguments: dict[str, Any],
    context: Any,
    signature: HandlerSignature | None = None,
) -> Any:
    """동기/비동기 핸들러를 같은 방식으로 호출해요. 등록 때 구한 시그니처가 있으면 그걸 써요."""
    resolved = signature if signature is not None else inspect_handler(handler)
    kwargs = resolved.bind(arguments, context)
    result = handler(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
