from __future__ import annotations

import abc
import hashlib
import re
from typing import Callable
from typing import Iterable
from typing import Optional

from .errors import DuplicateIdError
from .errors import NotFoundError

PATH_SEP = '/'

# ids that are removed from the path before a unique id is calculated
HIDDEN_ID = 'Default'
# ids that are kept in the hash but not shown in the human readable part
HIDDEN_FROM_HUMAN_ID = 'Resource'

HASH_LEN = 8
MAX_HUMAN_LEN = 240
MAX_ID_LEN = 255


class IConstruct(abc.ABC):
    """Anything that takes part in the construct tree"""

    @property
    @abc.abstractmethod
    def node(self) -> Node:
        ...

    def validate(self) -> list[str]:
        """Return a list of error messages. Called on every construct before synthesis."""
        return []


class Node:
    """The tree position of a construct: its id, its scope and its children"""

    def __init__(self, host: IConstruct, scope: Optional[IConstruct], id: str):
        id = id or ''
        if scope is not None and not id:
            raise ValueError('Only root constructs may have an empty id')
        if PATH_SEP in id:
            raise ValueError(f'Construct id {id!r} cannot contain {PATH_SEP!r}')
        self.host = host
        self.scope = scope
        self.id = id
        self._children: dict[str, IConstruct] = {}
        self._dependencies: list[IConstruct] = []
        if scope is not None:
            scope.node._add_child(host, id)

    def _add_child(self, child: IConstruct, id: str) -> None:
        if id in self._children:
            where = self.path or '<root>'
            raise DuplicateIdError(f'There is already a construct with id {id!r} in {where}')
        self._children[id] = child

    @property
    def scopes(self) -> list[IConstruct]:
        """All constructs from the root down to (and including) this one"""
        scopes = []
        current: Optional[IConstruct] = self.host
        while current is not None:
            scopes.append(current)
            current = current.node.scope
        return scopes[::-1]

    @property
    def root(self) -> IConstruct:
        return self.scopes[0]

    @property
    def path_components(self) -> list[str]:
        # the root never contributes to the path
        return [c.node.id for c in self.scopes[1:]]

    @property
    def path(self) -> str:
        return PATH_SEP.join(self.path_components)

    @property
    def unique_id(self) -> str:
        """A deterministic identifier derived from the full path. Usable as a generated physical name."""
        return make_unique_id(self.path_components)

    @property
    def children(self) -> list[IConstruct]:
        return list(self._children.values())

    def try_find_child(self, id: str) -> Optional[IConstruct]:
        return self._children.get(id)

    def find_child(self, id: str) -> IConstruct:
        child = self.try_find_child(id)
        if child is None:
            raise NotFoundError(f'No construct with id {id!r} in {self.path or "<root>"}')
        return child

    @property
    def default_child(self) -> Optional[IConstruct]:
        return self.try_find_child(HIDDEN_FROM_HUMAN_ID) or self.try_find_child(HIDDEN_ID)

    def find_all(self) -> list[IConstruct]:
        """This construct and all of its descendants, depth first, children in insertion order"""
        found = []
        stack = [self.host]
        while stack:
            current = stack.pop()
            found.append(current)
            stack.extend(reversed(current.node.children))
        return found

    def find_ancestor(self, predicate: Callable[[IConstruct], bool]) -> IConstruct:
        """Walk up from this construct (inclusive) and return the nearest construct matching ``predicate``"""
        current: Optional[IConstruct] = self.host
        while current is not None:
            if predicate(current):
                return current
            current = current.node.scope
        raise NotFoundError(f'No matching ancestor found for {self.path or "<root>"}')

    def add_dependency(self, *constructs: IConstruct) -> None:
        for construct in constructs:
            if construct is self.host:
                raise ValueError(f'{self.path} cannot depend on itself')
            if construct not in self._dependencies:
                self._dependencies.append(construct)

    @property
    def dependencies(self) -> list[IConstruct]:
        return list(self._dependencies)

    def validate(self) -> list[tuple[str, str]]:
        errors = []
        for construct in self.find_all():
            for message in construct.validate():
                errors.append((construct.node.path, message))
        return errors


class Construct(IConstruct):
    def __init__(self, scope: Optional[IConstruct], id: str):
        self._node = Node(self, scope, id)

    @property
    def node(self) -> Node:
        return self._node

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.node.path or "<root>"}>'


def _remove_non_alphanumeric(s: str) -> str:
    return re.sub(r'[^A-Za-z0-9]', '', s)


def _remove_dupes(components: Iterable[str]) -> list[str]:
    result = []
    for component in components:
        if not result or result[-1] != component:
            result.append(component)
    return result


def _path_hash(components: list[str]) -> str:
    digest = hashlib.md5(PATH_SEP.join(components).encode('utf-8')).hexdigest()
    return digest[:HASH_LEN].upper()


def make_unique_id(components: list[str]) -> str:
    """
    Calculate an id from a list of path components.

    The id is made of the alphanumeric characters of the components followed by a hash of the full
    path, so two different paths never yield the same id even when their human readable parts collide.
    A single component path is returned as-is (stripped of non-alphanumerics).
    """
    components = [c for c in components if c != HIDDEN_ID]
    if not components:
        raise ValueError('Unable to calculate a unique id for an empty set of components')

    if len(components) == 1:
        candidate = _remove_non_alphanumeric(components[0])
        if candidate and len(candidate) <= MAX_ID_LEN:
            return candidate

    human = _remove_non_alphanumeric(''.join(_remove_dupes(c for c in components if c != HIDDEN_FROM_HUMAN_ID)))
    return human[:MAX_HUMAN_LEN] + _path_hash(components)
