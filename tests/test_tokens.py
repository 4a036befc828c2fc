"""Unit tests for tokens, resolution and captured lists."""

from __future__ import annotations

import pytest

from synthkit.construct import Construct
from synthkit.errors import CyclicResolutionError
from synthkit.errors import MutationAfterResolutionError
from synthkit.errors import NotFoundError
from synthkit.errors import ResolutionError
from synthkit.tokens import CapturedList
from synthkit.tokens import ResolveContext
from synthkit.tokens import Token
from synthkit.tokens import TokenKind
from synthkit.tokens import is_unresolved
from synthkit.tokens import make_constant
from synthkit.tokens import make_lazy
from synthkit.tokens import resolve


class TestConstantToken:
    def test_resolves_to_same_value_every_time(self):
        """GIVEN a constant token
        WHEN it is resolved several times
        THEN the same value comes back each time
        """
        token = make_constant({'Ref': 'Queue'})

        results = [token.resolve() for _ in range(5)]

        assert token.kind is TokenKind.CONSTANT
        assert all(result == {'Ref': 'Queue'} for result in results)

    def test_nested_tokens_are_resolved_deeply(self):
        """GIVEN a structure with tokens nested in dicts and lists
        WHEN it is resolved
        THEN every token is replaced by its value
        """
        inner = make_constant('inner')
        outer = make_lazy(lambda: {'Value': inner, 'List': [inner, 'plain']})

        assert resolve({'Top': outer}) == {'Top': {'Value': 'inner', 'List': ['inner', 'plain']}}

    def test_none_values_are_dropped_from_mappings(self):
        """GIVEN a mapping whose values resolve to None
        WHEN it is resolved
        THEN those keys are absent from the output
        """
        assert resolve({'A': None, 'B': make_lazy(lambda: None), 'C': 1}) == {'C': 1}


class TestLazyToken:
    def test_resolving_twice_without_mutation_is_idempotent(self):
        """GIVEN a lazy token reading a captured list
        WHEN it is resolved twice with no change in between
        THEN both results are equal
        """
        items = CapturedList()
        items.extend(['a', 'b'])
        token = items.token()

        assert token.resolve() == token.resolve() == ['a', 'b']

    def test_producer_runs_once_per_pass(self):
        """GIVEN a lazy token referenced twice in one structure
        WHEN the structure is resolved
        THEN the producer is called only once
        """
        calls = []

        def producer():
            calls.append(1)
            return 'value'

        token = make_lazy(producer)

        assert resolve([token, token]) == ['value', 'value']
        assert len(calls) == 1

    def test_producer_result_is_resolved_again(self):
        """GIVEN a lazy token whose producer returns another token
        WHEN it is resolved
        THEN the inner token is resolved as well
        """
        token = make_lazy(lambda: make_lazy(lambda: 42))

        assert token.resolve() == 42
        assert is_unresolved(token)
        assert not is_unresolved(42)

    def test_lazy_requires_callable(self):
        with pytest.raises(TypeError):
            Token(TokenKind.LAZY, producer='not callable')

    def test_direct_cycle_raises(self):
        """GIVEN a lazy token whose producer resolves the same token
        WHEN it is resolved
        THEN CyclicResolutionError is raised instead of recursing forever
        """
        holder = {}
        token = Token.lazy(lambda: holder['token'].resolve(), display_hint='self reference')
        holder['token'] = token

        with pytest.raises(CyclicResolutionError) as exc_info:
            token.resolve()

        assert len(exc_info.value.chain) == 2

    def test_indirect_cycle_raises(self):
        """GIVEN two lazy tokens producing each other
        WHEN one is resolved
        THEN CyclicResolutionError names both tokens in the chain
        """
        tokens = {}
        tokens['a'] = Token.lazy(lambda: {'b': tokens['b']}, display_hint='a')
        tokens['b'] = Token.lazy(lambda: {'a': tokens['a']}, display_hint='b')

        with pytest.raises(CyclicResolutionError) as exc_info:
            resolve(tokens['a'])

        assert 'a' in str(exc_info.value)
        assert 'b' in str(exc_info.value)

    def test_producer_error_is_wrapped_with_source_path(self, app):
        """GIVEN a lazy token created by a construct whose producer fails
        WHEN it is resolved
        THEN a ResolutionError carries the construct path and the original error
        """
        parent = Construct(app, 'Parent')
        child = Construct(parent, 'Child')

        def producer():
            raise KeyError('missing')

        token = Token.lazy(producer, source=child)

        with pytest.raises(ResolutionError) as exc_info:
            token.resolve()

        assert exc_info.value.source_path == 'Parent/Child'
        assert isinstance(exc_info.value.cause, KeyError)

    def test_library_error_from_producer_is_wrapped_with_source_path(self, app):
        owner = Construct(app, 'Owner')

        def producer():
            raise NotFoundError('missing thing')

        with pytest.raises(ResolutionError) as exc_info:
            Token.lazy(producer, source=owner).resolve()

        assert exc_info.value.source_path == 'Owner'
        assert isinstance(exc_info.value.cause, NotFoundError)

    def test_repr_describes_token(self, app):
        construct = Construct(app, 'Owner')
        token = Token.lazy(lambda: 1, source=construct, display_hint='answer')

        assert repr(token) == '<Token[Lazy answer from Owner]>'

    def test_nested_resolve_joins_active_context(self):
        """GIVEN a resolution pass in progress
        WHEN a producer calls resolve on another token
        THEN it joins the active pass
        """
        inner = make_lazy(lambda: ResolveContext.current())
        outer = make_lazy(lambda: inner.resolve())

        with ResolveContext() as context:
            assert context.resolve(outer) is context


class TestCapturedList:
    def test_mutation_after_snapshot_raises(self):
        """GIVEN a captured list read by a token
        WHEN the list is modified afterwards
        THEN MutationAfterResolutionError is raised
        """
        items = CapturedList(name='things')
        items.append('a')
        items.token().resolve()

        assert items.sealed
        with pytest.raises(MutationAfterResolutionError):
            items.append('b')
        with pytest.raises(MutationAfterResolutionError):
            items.extend(['b'])
        with pytest.raises(MutationAfterResolutionError):
            items.clear()
        with pytest.raises(MutationAfterResolutionError):
            items[0] = 'c'
        assert list(items) == ['a']

    def test_mutation_before_resolution_is_visible(self):
        """GIVEN a token created from a captured list
        WHEN the list is modified before resolution
        THEN the modification is part of the resolved value
        """
        items = CapturedList()
        token = items.token()
        items.append(1)
        items[0] = 2
        items.append(3)

        assert token.resolve() == [2, 3]

    def test_absent_until_added(self):
        """GIVEN a captured list that is absent until added
        WHEN it is never configured, extended with nothing, or cleared
        THEN it renders None, [] and [] respectively
        """
        never = CapturedList(absent_until_added=True)
        emptied = CapturedList(absent_until_added=True)
        emptied.extend([])
        cleared = CapturedList(absent_until_added=True)
        cleared.append('x')
        cleared.clear()

        assert resolve({'Never': never.token(), 'Emptied': emptied.token(), 'Cleared': cleared.token()}) == {
            'Emptied': [],
            'Cleared': [],
        }
        assert not never.configured
