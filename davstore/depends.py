from typing import Annotated, Any, Callable, TypeVar

from fastapi import Depends, FastAPI

T = TypeVar("T")

_providers: dict[Any, Callable[[], Any]] = {}


def _provider(tp: Any) -> Callable[[], Any]:
    if tp not in _providers:

        def provider() -> Any:
            raise RuntimeError(f"No value bound for {tp!r}")

        _providers[tp] = provider
    return _providers[tp]


class Injected:
    """`Injected[T]` resolves to the value bound for `T` with `bind`."""

    def __class_getitem__(cls, tp: Any) -> Any:
        return Annotated[tp, Depends(_provider(tp))]


def bind(app: FastAPI, tp: type[T], value: T) -> None:
    app.dependency_overrides[_provider(tp)] = lambda: value
