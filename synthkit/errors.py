from __future__ import annotations

from typing import Optional


class SynthKitError(Exception):
    """Base class for all errors raised by synthkit"""

    ...


class DuplicateIdError(SynthKitError):
    """Raised when two siblings in the construct tree are declared with the same id"""

    ...


class NotFoundError(SynthKitError):
    """Raised when an ancestor or child lookup reaches the end of the tree without a match"""

    ...


class InvalidTierError(SynthKitError):
    """Raised when a step adjustment tier has neither a lower nor an upper bound"""

    ...


class UnsupportedOnImportError(SynthKitError):
    """Raised when an imported resource is asked for something only a live resource can provide"""

    ...


class MutationAfterResolutionError(SynthKitError):
    """Raised when a captured collection is modified after a token already read it"""

    ...


class ValidationError(SynthKitError):
    def __init__(self, errors: list[tuple[str, str]]):
        self.errors = errors
        lines = '\n'.join(f'  [{path}] {message}' for path, message in errors)
        super().__init__(f'Validation failed with the following errors:\n{lines}')


class CyclicResolutionError(SynthKitError):
    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__('Cyclic token resolution: ' + ' -> '.join(chain))


class ResolutionError(SynthKitError):
    def __init__(self, cause: BaseException, source_path: Optional[str] = None):
        self.cause = cause
        self.source_path = source_path
        origin = source_path if source_path is not None else '<unknown>'
        super().__init__(f'Failed to resolve token created by {origin}: {cause}')


class SynthesisError(SynthKitError):
    """Top level synthesis failure. Wraps the first error encountered and the path of the failing node"""

    def __init__(self, cause: BaseException, path: str):
        self.cause = cause
        self.path = path
        super().__init__(f'Synthesis failed at {path or "<root>"}: {cause}')


class CreationDeferredException(SynthKitError):
    """Raise this to defer creation to later"""

    ...
