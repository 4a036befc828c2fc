from __future__ import annotations

import abc
import contextvars
import enum
import logging
from typing import TYPE_CHECKING
from typing import Any
from typing import Callable
from typing import Generic
from typing import Iterable
from typing import Iterator
from typing import Optional
from typing import TypeVar

from .errors import CyclicResolutionError
from .errors import MutationAfterResolutionError
from .errors import ResolutionError

if TYPE_CHECKING:
    from .construct import IConstruct

T = TypeVar('T')

_active_context: contextvars.ContextVar[Optional[ResolveContext]] = contextvars.ContextVar('synthkit_resolve_context', default=None)


class Resolvable(abc.ABC):
    """Something that only turns into a plain value during resolution"""

    @abc.abstractmethod
    def render(self, context: ResolveContext) -> Any:
        ...

    def describe(self) -> str:
        return repr(self)


class TokenKind(enum.Enum):
    CONSTANT = 'Constant'
    LAZY = 'Lazy'


class Token(Resolvable):
    """
    A placeholder for a value that may not be known until synthesis.

    Constant tokens wrap a fixed value. Lazy tokens wrap a zero-argument producer which is invoked when the
    token is resolved. The producer must return the same value every time it is called within one synthesis
    pass. Whatever the producer returns is resolved again, so it may itself contain tokens.
    """

    __slots__ = ('_kind', '_value', '_producer', '_source', '_display_hint')

    def __init__(
        self,
        kind: TokenKind,
        value: Any = None,
        producer: Optional[Callable[[], Any]] = None,
        source: Optional[IConstruct] = None,
        display_hint: Optional[str] = None,
    ):
        if kind is TokenKind.LAZY and not callable(producer):
            raise TypeError(f'lazy tokens require a callable producer, got {producer!r}')
        self._kind = kind
        self._value = value
        self._producer = producer
        self._source = source
        self._display_hint = display_hint

    @classmethod
    def constant(cls, value: Any, source: Optional[IConstruct] = None, display_hint: Optional[str] = None) -> Token:
        return cls(TokenKind.CONSTANT, value=value, source=source, display_hint=display_hint)

    @classmethod
    def lazy(cls, producer: Callable[[], Any], source: Optional[IConstruct] = None, display_hint: Optional[str] = None) -> Token:
        return cls(TokenKind.LAZY, producer=producer, source=source, display_hint=display_hint)

    @property
    def kind(self) -> TokenKind:
        return self._kind

    @property
    def source(self) -> Optional[IConstruct]:
        return self._source

    @property
    def source_path(self) -> Optional[str]:
        if self._source is None:
            return None
        return self._source.node.path

    def render(self, context: ResolveContext) -> Any:
        if self._kind is TokenKind.CONSTANT:
            return self._value
        try:
            return self._producer()
        except (CyclicResolutionError, ResolutionError):
            raise
        except Exception as e:
            raise ResolutionError(e, self.source_path) from e

    def resolve(self) -> Any:
        """Resolve this token, joining the active resolution pass if there is one"""
        context = ResolveContext.current()
        if context is not None:
            return context.resolve(self)
        with ResolveContext() as context:
            return context.resolve(self)

    def describe(self) -> str:
        parts = [self._kind.value]
        if self._display_hint:
            parts.append(self._display_hint)
        if self._source is not None:
            parts.append(f'from {self.source_path or "<root>"}')
        return 'Token[' + ' '.join(parts) + ']'

    def __repr__(self) -> str:
        return f'<{self.describe()}>'


def make_constant(value: Any, source: Optional[IConstruct] = None) -> Token:
    return Token.constant(value, source=source)


def make_lazy(producer: Callable[[], Any], source: Optional[IConstruct] = None) -> Token:
    return Token.lazy(producer, source=source)


def is_unresolved(value: Any) -> bool:
    return isinstance(value, Resolvable)


class ResolveContext:
    """
    One resolution pass.

    Resolved values are memoised per pass, so every token is rendered at most once. Resolvables currently
    being rendered are tracked on a stack; asking for one of them again is a cycle.
    """

    def __init__(self, scope: Optional[IConstruct] = None):
        self.scope = scope
        self._resolved: dict[int, tuple[Resolvable, Any]] = {}
        self._in_progress: list[Resolvable] = []
        self._reset_token: Optional[contextvars.Token] = None

    @classmethod
    def current(cls) -> Optional[ResolveContext]:
        return _active_context.get()

    def __enter__(self) -> ResolveContext:
        self._reset_token = _active_context.set(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _active_context.reset(self._reset_token)
        self._reset_token = None

    def resolve(self, value: Any) -> Any:
        if isinstance(value, Resolvable):
            return self._resolve_resolvable(value)
        if isinstance(value, dict):
            result = {}
            for key, item in value.items():
                resolved = self.resolve(item)
                # absent values are dropped so optional properties disappear from the output
                if resolved is None:
                    continue
                result[key] = resolved
            return result
        if isinstance(value, (list, tuple)):
            return [self.resolve(item) for item in value]
        if isinstance(value, enum.Enum):
            return value.value
        return value

    def _resolve_resolvable(self, resolvable: Resolvable) -> Any:
        key = id(resolvable)
        if key in self._resolved:
            return self._resolved[key][1]
        for index, in_progress in enumerate(self._in_progress):
            if in_progress is resolvable:
                chain = [r.describe() for r in self._in_progress[index:]] + [resolvable.describe()]
                raise CyclicResolutionError(chain)
        self._in_progress.append(resolvable)
        try:
            value = self.resolve(resolvable.render(self))
        finally:
            self._in_progress.pop()
        self._resolved[key] = (resolvable, value)
        return value


def resolve(value: Any, scope: Optional[IConstruct] = None) -> Any:
    """Deeply resolve any structure containing tokens"""
    context = ResolveContext.current()
    if context is not None:
        return context.resolve(value)
    with ResolveContext(scope) as context:
        return context.resolve(value)


class CapturedList(Generic[T]):
    """
    An ordered list owned by a resource and read by a lazy token at synthesis time.

    Entries may be added freely until a token reads the list. From then on the list is sealed and any
    further change raises ``MutationAfterResolutionError``. With ``absent_until_added`` the list reads as
    ``None`` until the first add/extend/clear call, which lets the output tell "never configured" apart
    from "configured empty".
    """

    def __init__(self, absent_until_added: bool = False, name: str = 'list', owner: Optional[IConstruct] = None):
        self._items: list[T] = []
        self._configured = not absent_until_added
        self._sealed = False
        self._name = name
        self._owner = owner

    @property
    def configured(self) -> bool:
        return self._configured

    @property
    def sealed(self) -> bool:
        return self._sealed

    def _describe(self) -> str:
        if self._owner is None:
            return self._name
        return f'{self._name} of {self._owner.node.path}'

    def _check_mutable(self) -> None:
        if self._sealed:
            raise MutationAfterResolutionError(f'{self._describe()} was already read during synthesis and can no longer be modified')

    def append(self, item: T) -> None:
        self._check_mutable()
        self._configured = True
        self._items.append(item)

    def extend(self, items: Iterable[T]) -> None:
        self._check_mutable()
        self._configured = True
        self._items.extend(items)

    def clear(self) -> None:
        self._check_mutable()
        self._configured = True
        self._items.clear()

    def __setitem__(self, index: int, item: T) -> None:
        self._check_mutable()
        self._items[index] = item

    def __getitem__(self, index: int) -> T:
        return self._items[index]

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> Optional[list[T]]:
        """Read the current entries. Reading seals the list."""
        if not self._sealed:
            logging.debug(f'sealing {self._describe()} with {len(self._items)} entries')
        self._sealed = True
        if not self._configured:
            return None
        return list(self._items)

    def token(self, source: Optional[IConstruct] = None) -> Token:
        return Token.lazy(self.snapshot, source=source or self._owner, display_hint=self._name)

    def __repr__(self) -> str:
        state = 'sealed' if self._sealed else 'open'
        return f'<CapturedList {self._describe()} ({state}) {self._items!r}>'
