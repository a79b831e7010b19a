from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Tuple, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")
F = TypeVar("F")


class Result(Generic[T, E]):
    """
    Result estilo Ok/Err para procesar lotes fila por fila.

    Uso típico: parsear una cartola bancaria, donde una fila mala no debe
    abortar el resto; los errores se juntan y se reportan al final.

        r = parse_row(row)
        if r.is_ok():
            movements.append(r.value)
        else:
            errors.append(r.error)
    """

    def is_ok(self) -> bool:
        raise NotImplementedError

    def is_err(self) -> bool:
        return not self.is_ok()

    def map(self, fn: Callable[[T], U]) -> Result[U, E]:
        """Aplica fn(value) sólo si es Ok, propaga Err tal cual."""
        raise NotImplementedError

    def map_err(self, fn: Callable[[E], F]) -> Result[T, F]:
        raise NotImplementedError

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """and_then: encadena operaciones que también devuelven Result."""
        raise NotImplementedError

    def unwrap_or(self, default: T) -> T:
        raise NotImplementedError


@dataclass(frozen=True)
class Ok(Result[T, E]):
    value: T

    def is_ok(self) -> bool:
        return True

    def map(self, fn: Callable[[T], U]) -> Result[U, E]:
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Result[T, F]:
        return Ok(self.value)  # type: ignore[return-value]

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return fn(self.value)

    def unwrap_or(self, default: T) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Result[T, E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def map(self, fn: Callable[[T], U]) -> Result[U, E]:
        return Err(self.error)  # type: ignore[return-value]

    def map_err(self, fn: Callable[[E], F]) -> Result[T, F]:
        return Err(fn(self.error))

    def bind(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        return Err(self.error)  # type: ignore[return-value]

    def unwrap_or(self, default: T) -> T:
        return default


def ok(value: T) -> Result[T, Any]:
    return Ok(value)


def err(error: E) -> Result[Any, E]:
    return Err(error)


def partition(results: Iterable[Result[T, E]]) -> Tuple[List[T], List[E]]:
    """Separa valores Ok y errores Err, preservando el orden."""
    values: List[T] = []
    errors: List[E] = []
    for r in results:
        if isinstance(r, Ok):
            values.append(r.value)
        elif isinstance(r, Err):
            errors.append(r.error)
    return values, errors
