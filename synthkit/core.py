from __future__ import annotations

import abc
import enum
import re
from typing import Any
from typing import Optional
from typing import Union

import pydantic

from .construct import Construct
from .construct import IConstruct
from .construct import make_unique_id
from .errors import NotFoundError
from .tokens import Resolvable
from .tokens import Token
from .tokens import resolve

ArnValue = Union[str, Token]

_STACK_NAME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9-]*$')
_LOGICAL_ID_RE = re.compile(r'^[A-Za-z0-9]{1,255}$')


class Fn:
    """CloudFormation intrinsic functions. Plain string inputs are folded at declaration time."""

    @staticmethod
    def ref(logical_name: str) -> Token:
        return Token.constant({'Ref': logical_name}, display_hint=f'Ref {logical_name}')

    @staticmethod
    def get_att(logical_name: str, attribute: str) -> Token:
        return Token.constant({'Fn::GetAtt': [logical_name, attribute]}, display_hint=f'{logical_name}.{attribute}')

    @staticmethod
    def join(delimiter: str, values: list[Any]) -> ArnValue:
        if all(isinstance(v, str) for v in values):
            return delimiter.join(values)
        if delimiter == '':
            # adjacent literals are concatenated
            folded: list[Any] = []
            for value in values:
                if isinstance(value, str) and folded and isinstance(folded[-1], str):
                    folded[-1] += value
                elif value != '':
                    folded.append(value)
            values = folded
        return Token.constant({'Fn::Join': [delimiter, list(values)]}, display_hint='Fn::Join')

    @staticmethod
    def split(delimiter: str, source: ArnValue) -> Union[list[str], Token]:
        if isinstance(source, str):
            return source.split(delimiter)
        return Token.constant({'Fn::Split': [delimiter, source]}, display_hint='Fn::Split')

    @staticmethod
    def select(index: int, values: Union[list[Any], Token]) -> Any:
        if isinstance(values, list) and not any(isinstance(v, Resolvable) for v in values):
            return values[index]
        return Token.constant({'Fn::Select': [index, values]}, display_hint='Fn::Select')


class Aws:
    ACCOUNT_ID = Fn.ref('AWS::AccountId')
    REGION = Fn.ref('AWS::Region')
    PARTITION = Fn.ref('AWS::Partition')
    STACK_NAME = Fn.ref('AWS::StackName')
    URL_SUFFIX = Fn.ref('AWS::URLSuffix')


class ArnComponents(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True, frozen=True)

    partition: ArnValue
    service: ArnValue
    region: ArnValue
    account: ArnValue
    resource: ArnValue
    sep: str = '/'
    resource_name: Optional[ArnValue] = None


class Stack(Construct):
    """A deployable unit. Every resource belongs to exactly one stack."""

    def __init__(
        self,
        scope: Optional[IConstruct] = None,
        id: str = 'Stack',
        *,
        stack_name: Optional[str] = None,
        account: Optional[str] = None,
        region: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(scope, id)
        if stack_name is None:
            stack_name = '-'.join(self.node.path_components) or self.node.id
        if not _STACK_NAME_RE.match(stack_name):
            raise ValueError(f'Stack name must match {_STACK_NAME_RE.pattern}, got {stack_name!r}')
        self.stack_name = stack_name
        self.description = description
        self._account = account or None
        self._region = region or None

    @staticmethod
    def of(construct: IConstruct) -> Stack:
        try:
            return construct.node.find_ancestor(lambda c: isinstance(c, Stack))  # type: ignore[return-value]
        except NotFoundError as e:
            raise NotFoundError(f'{construct!r} should be created in the scope of a Stack, but no Stack found') from e

    @property
    def account(self) -> ArnValue:
        return self._account if self._account is not None else Aws.ACCOUNT_ID

    @property
    def region(self) -> ArnValue:
        return self._region if self._region is not None else Aws.REGION

    @property
    def partition(self) -> ArnValue:
        return Aws.PARTITION

    @property
    def url_suffix(self) -> ArnValue:
        return Aws.URL_SUFFIX

    def get_logical_id(self, element: CfnElement) -> str:
        if element.logical_id_override is not None:
            return element.logical_id_override
        own_depth = len(self.node.path_components)
        return make_unique_id(element.node.path_components[own_depth:])

    def format_arn(
        self,
        *,
        service: str,
        resource: str,
        resource_name: Optional[ArnValue] = None,
        sep: str = '/',
        region: Optional[ArnValue] = None,
        account: Optional[ArnValue] = None,
        partition: Optional[ArnValue] = None,
    ) -> ArnValue:
        if sep not in ('/', ':', ''):
            raise ValueError(f'resource separator must be "/", ":" or an empty string, got {sep!r}')
        values: list[Any] = [
            'arn:',
            partition if partition is not None else self.partition,
            ':',
            service,
            ':',
            region if region is not None else self.region,
            ':',
            account if account is not None else self.account,
            ':',
            resource,
        ]
        if resource_name is not None:
            values.extend([sep, resource_name])
        return Fn.join('', values)

    def parse_arn(self, arn: ArnValue, sep: str = '/') -> ArnComponents:
        return parse_arn(arn, sep=sep)


def parse_arn(arn: ArnValue, sep: str = '/') -> ArnComponents:
    """
    Split an ARN into its components.

    When the ARN is itself unresolved the components are expressed with ``Fn::Select``/``Fn::Split``
    so they resolve in the deployed template.
    """
    if isinstance(arn, Resolvable):
        parts = Fn.split(':', arn)
        if sep == ':':
            resource = Fn.select(5, parts)
            resource_name = Fn.select(6, parts)
        else:
            resource = Fn.select(0, Fn.split(sep, Fn.select(5, parts)))
            resource_name = Fn.select(1, Fn.split(sep, Fn.select(5, parts)))
        return ArnComponents(
            partition=Fn.select(1, parts),
            service=Fn.select(2, parts),
            region=Fn.select(3, parts),
            account=Fn.select(4, parts),
            resource=resource,
            sep=sep,
            resource_name=resource_name,
        )

    components = arn.split(':')
    if len(components) < 6 or components[0] != 'arn':
        raise ValueError(f'ARNs must have at least 6 components separated by ":", got {arn!r}')
    _, partition, service, region, account, resource, *rest = components
    resource_name: Optional[str] = None
    if rest:
        sep = ':'
        resource_name = ':'.join(rest)
    elif sep and sep in resource:
        resource, resource_name = resource.split(sep, 1)
    return ArnComponents(
        partition=partition,
        service=service,
        region=region,
        account=account,
        resource=resource,
        sep=sep,
        resource_name=resource_name,
    )


class CfnElement(Construct, abc.ABC):
    """A construct that contributes a fragment to the synthesized template"""

    def __init__(self, scope: IConstruct, id: str):
        super().__init__(scope, id)
        self.stack = Stack.of(self)
        self.logical_id_override: Optional[str] = None
        self.logical_id = Token.lazy(lambda: self.stack.get_logical_id(self), source=self, display_hint='logical id')

    def override_logical_id(self, new_logical_id: str) -> None:
        if not _LOGICAL_ID_RE.match(new_logical_id):
            raise ValueError(f'Logical ids must be alphanumeric, got {new_logical_id!r}')
        self.logical_id_override = new_logical_id

    @abc.abstractmethod
    def _to_cloudformation(self) -> dict[str, Any]:
        """Return the template sections this element contributes. Values may contain tokens."""
        ...


class CfnResource(CfnElement):
    def __init__(self, scope: IConstruct, id: str, *, type: str, properties: Optional[dict[str, Any]] = None):
        super().__init__(scope, id)
        self.cfn_resource_type = type
        self.properties: dict[str, Any] = dict(properties or {})
        self.ref = Token.lazy(lambda: {'Ref': self.stack.get_logical_id(self)}, source=self, display_hint='Ref')

    def get_att(self, attribute: str) -> Token:
        return Token.lazy(
            lambda: {'Fn::GetAtt': [self.stack.get_logical_id(self), attribute]},
            source=self,
            display_hint=f'GetAtt {attribute}',
        )

    def add_depends_on(self, target: CfnResource) -> None:
        self.node.add_dependency(target)

    def _depends_on(self) -> Optional[list[str]]:
        logical_ids = set()
        for scope in self.node.scopes:
            for dependency in scope.node.dependencies:
                for construct in dependency.node.find_all():
                    if isinstance(construct, CfnResource) and construct is not self and construct.stack is self.stack:
                        logical_ids.add(self.stack.get_logical_id(construct))
        return sorted(logical_ids) or None

    def _to_cloudformation(self) -> dict[str, Any]:
        return {
            'Resources': {
                self.stack.get_logical_id(self): {
                    'Type': self.cfn_resource_type,
                    # properties that all resolve to None leave no empty mapping behind
                    'Properties': Token.lazy(lambda: resolve(self.properties) or None, source=self, display_hint='properties'),
                    'DependsOn': self._depends_on(),
                }
            }
        }


class CfnOutput(CfnElement):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        value: Any,
        description: Optional[str] = None,
        export_name: Optional[str] = None,
    ):
        super().__init__(scope, id)
        if value is None:
            raise ValueError(f'CfnOutput {id!r} requires a value')
        self.value = value
        self.description = description
        self.export_name = export_name

    def _to_cloudformation(self) -> dict[str, Any]:
        return {
            'Outputs': {
                self.stack.get_logical_id(self): {
                    'Description': self.description,
                    'Value': self.value,
                    'Export': {'Name': self.export_name} if self.export_name else None,
                }
            }
        }


class OwnershipMode(enum.Enum):
    LIVE = 'Live'
    IMPORTED = 'Imported'


class IResource(IConstruct):
    @property
    @abc.abstractmethod
    def stack(self) -> Stack:
        ...

    @property
    @abc.abstractmethod
    def ownership_mode(self) -> OwnershipMode:
        ...


class Resource(Construct, IResource):
    """
    Base class for resource constructs.

    Resources created with a ``from_*`` class method are imported: they are still nodes in the tree but are
    backed only by an identifier supplied from outside.
    """

    _ownership_mode = OwnershipMode.LIVE

    def __init__(self, scope: IConstruct, id: str):
        super().__init__(scope, id)
        self._stack = Stack.of(self)

    @property
    def stack(self) -> Stack:
        return self._stack

    @property
    def ownership_mode(self) -> OwnershipMode:
        return self._ownership_mode

    @property
    def is_imported(self) -> bool:
        return self._ownership_mode is OwnershipMode.IMPORTED
