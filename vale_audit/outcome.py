"""
Tagged results used at adapter boundaries.

`Ok`/`Err` wrap blob store calls so callers decide explicitly how to degrade;
`ParseError`/`ShapeError` are the two failure tags of the model output decoders.
"""
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class ParseError:
    """Text that could not be parsed as JSON at all (retriable)."""
    raw_text: str
    reason: str

    @property
    def ok(self) -> bool:
        return False


@dataclass(frozen=True)
class ShapeError:
    """Valid JSON with an unexpected shape (needs a code or prompt change)."""
    raw_text: str
    reason: str

    @property
    def ok(self) -> bool:
        return False
