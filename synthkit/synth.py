from __future__ import annotations

import json
import logging
from typing import Any
from typing import Iterator
from typing import Mapping
from typing import Optional

import yaml

from .construct import Construct
from .construct import IConstruct
from .core import CfnElement
from .core import Stack
from .errors import DuplicateIdError
from .errors import SynthesisError
from .errors import ValidationError
from .tokens import ResolveContext

# template sections in the order they are emitted
SECTIONS = ('Description', 'Resources', 'Outputs')


class StructuredDocument(Mapping[str, Any]):
    """A fully resolved template. Contains only plain dicts, lists, strings, numbers and booleans."""

    def __init__(self, template: dict[str, Any]):
        self._template = template

    def __getitem__(self, key: str) -> Any:
        return self._template[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._template)

    def __len__(self) -> int:
        return len(self._template)

    @property
    def resources(self) -> dict[str, Any]:
        return self._template.get('Resources', {})

    @property
    def outputs(self) -> dict[str, Any]:
        return self._template.get('Outputs', {})

    def find_resources(self, resource_type: str) -> dict[str, Any]:
        return {logical_id: resource for logical_id, resource in self.resources.items() if resource['Type'] == resource_type}

    def to_dict(self) -> dict[str, Any]:
        return json.loads(self.to_json())

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self._template, indent=indent)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self._template, sort_keys=False, default_flow_style=False)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, StructuredDocument):
            return self._template == other._template
        return self._template == other

    def __repr__(self) -> str:
        return f'StructuredDocument({self._template!r})'


class Synthesizer:
    """
    Turns a construct tree into a StructuredDocument.

    Constructs are validated first. Then every CfnElement is visited depth first, children in insertion
    order, and its template fragment is resolved within one shared ResolveContext. Tokens are pulled as
    they are needed, so an element may cause tokens owned by other elements to be resolved first.
    Any failure aborts the whole document.
    """

    def synthesize(self, root: IConstruct) -> StructuredDocument:
        logging.debug(f'synthesizing {root!r}')
        self._validate(root)
        template: dict[str, Any] = {}
        if isinstance(root, Stack) and root.description:
            template['Description'] = root.description

        with ResolveContext(root) as context:
            for construct in root.node.find_all():
                if not isinstance(construct, CfnElement):
                    continue
                try:
                    fragment = context.resolve(construct._to_cloudformation())
                    self._merge_fragment(template, fragment)
                except Exception as e:
                    logging.debug(f'synthesis failed at {construct.node.path}: {e}')
                    raise SynthesisError(e, construct.node.path) from e

        ordered = {section: template[section] for section in SECTIONS if section in template}
        return StructuredDocument(ordered)

    def _validate(self, root: IConstruct) -> None:
        errors = root.node.validate()
        if errors:
            raise SynthesisError(ValidationError(errors), errors[0][0])

    @staticmethod
    def _merge_fragment(template: dict[str, Any], fragment: dict[str, Any]) -> None:
        for section, entries in fragment.items():
            target = template.setdefault(section, {})
            for logical_id, value in entries.items():
                if logical_id in target:
                    raise DuplicateIdError(f'Duplicate logical id {logical_id!r} in section {section}')
                target[logical_id] = value


def synthesize(root: IConstruct) -> StructuredDocument:
    return Synthesizer().synthesize(root)


class App(Construct):
    """The root of a construct tree. Holds one or more stacks."""

    def __init__(self):
        super().__init__(None, '')

    @property
    def stacks(self) -> list[Stack]:
        return [c for c in self.node.find_all() if isinstance(c, Stack)]

    def synth(self) -> dict[str, StructuredDocument]:
        synthesizer = Synthesizer()
        documents = {}
        for stack in self.stacks:
            if stack.stack_name in documents:
                raise DuplicateIdError(f'Stack name {stack.stack_name!r} is used by more than one stack')
            documents[stack.stack_name] = synthesizer.synthesize(stack)
        return documents
