from __future__ import annotations

import abc
import enum
import json
from typing import Any
from typing import Iterable
from typing import Optional

from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import IResource
from .core import OwnershipMode
from .core import Resource
from .core import parse_arn
from .tokens import CapturedList
from .tokens import Resolvable
from .tokens import ResolveContext
from .tokens import resolve

POLICY_VERSION = '2012-10-17'


class Effect(enum.Enum):
    ALLOW = 'Allow'
    DENY = 'Deny'


class IPrincipal(abc.ABC):
    @property
    @abc.abstractmethod
    def policy_fragment(self) -> dict[str, list[Any]]:
        """The ``Principal`` block contribution, e.g. ``{'Service': ['sns.amazonaws.com']}``"""
        ...

    def add_to_policy(self, statement: PolicyStatement) -> bool:
        """Add a statement to this principal's own policy. Returns False if the principal cannot hold one."""
        return False


class IGrantable(abc.ABC):
    @property
    @abc.abstractmethod
    def grant_principal(self) -> IPrincipal:
        ...


class PrincipalBase(IPrincipal, IGrantable):
    @property
    def grant_principal(self) -> IPrincipal:
        return self

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.policy_fragment!r})'


class ServicePrincipal(PrincipalBase):
    def __init__(self, service: str):
        self.service = service

    @property
    def policy_fragment(self) -> dict[str, list[Any]]:
        return {'Service': [self.service]}


class ArnPrincipal(PrincipalBase):
    def __init__(self, arn: ArnValue):
        self.arn = arn

    @property
    def policy_fragment(self) -> dict[str, list[Any]]:
        return {'AWS': [self.arn]}


class AnyPrincipal(ArnPrincipal):
    def __init__(self):
        super().__init__('*')


def _freeze(value: Any) -> Any:
    """A hashable stand-in for a statement fragment. Unresolved values compare by identity."""
    if isinstance(value, Resolvable):
        return ('<unresolved>', id(value))
    if isinstance(value, dict):
        return tuple(sorted((key, _freeze(item)) for key, item in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


def _unique(values: Iterable[Any]) -> list[Any]:
    result: list[Any] = []
    for value in values:
        if isinstance(value, Resolvable):
            if not any(value is existing for existing in result):
                result.append(value)
        elif value not in result:
            result.append(value)
    return result


def _collapse(values: list[Any]) -> Any:
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


class PolicyStatement(Resolvable):
    """
    A single IAM policy statement.

    Statements can be built up with the ``add_*`` methods until they are attached to a PolicyDocument,
    after which they are frozen.
    """

    def __init__(
        self,
        *,
        effect: Effect = Effect.ALLOW,
        actions: Optional[Iterable[str]] = None,
        resources: Optional[Iterable[ArnValue]] = None,
        principals: Optional[Iterable[IPrincipal]] = None,
        conditions: Optional[dict[str, dict[str, Any]]] = None,
    ):
        self._effect = effect
        self._actions: list[str] = []
        self._resources: list[ArnValue] = []
        self._principals: list[IPrincipal] = []
        self._conditions: dict[str, dict[str, Any]] = {}
        self._frozen = False
        self.add_actions(*(actions or []))
        self.add_resources(*(resources or []))
        self.add_principals(*(principals or []))
        for key, value in (conditions or {}).items():
            self.add_condition(key, value)

    def _check_not_frozen(self) -> None:
        if self._frozen:
            raise ValueError('Statement was already attached to a policy document and can no longer be modified')

    @property
    def effect(self) -> Effect:
        return self._effect

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._actions)

    @property
    def resources(self) -> tuple[ArnValue, ...]:
        return tuple(self._resources)

    @property
    def principals(self) -> tuple[IPrincipal, ...]:
        return tuple(self._principals)

    @property
    def conditions(self) -> dict[str, dict[str, Any]]:
        return {key: dict(value) for key, value in self._conditions.items()}

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add_actions(self, *actions: str) -> PolicyStatement:
        self._check_not_frozen()
        for action in actions:
            if action != '*' and ':' not in action:
                raise ValueError(f'Action {action!r} must be in the form "service:Action" or "*"')
            if action not in self._actions:
                self._actions.append(action)
        return self

    def add_action(self, action: str) -> PolicyStatement:
        return self.add_actions(action)

    def add_resources(self, *resources: ArnValue) -> PolicyStatement:
        self._check_not_frozen()
        self._resources = _unique([*self._resources, *resources])
        return self

    def add_resource(self, resource: ArnValue) -> PolicyStatement:
        return self.add_resources(resource)

    def add_all_resources(self) -> PolicyStatement:
        return self.add_resources('*')

    def add_principals(self, *principals: IPrincipal) -> PolicyStatement:
        self._check_not_frozen()
        self._principals.extend(principals)
        return self

    def add_service_principal(self, service: str) -> PolicyStatement:
        return self.add_principals(ServicePrincipal(service))

    def add_arn_principal(self, arn: ArnValue) -> PolicyStatement:
        return self.add_principals(ArnPrincipal(arn))

    def add_condition(self, key: str, value: dict[str, Any]) -> PolicyStatement:
        self._check_not_frozen()
        existing = self._conditions.setdefault(key, {})
        existing.update(value)
        return self

    def freeze(self) -> PolicyStatement:
        self._frozen = True
        return self

    def _principal_block(self) -> dict[str, list[Any]]:
        block: dict[str, list[Any]] = {}
        for principal in self._principals:
            for key, values in principal.policy_fragment.items():
                block[key] = _unique([*block.get(key, []), *values])
        return block

    def merge_key(self) -> tuple:
        return (
            self._effect.value,
            frozenset(self._actions),
            _freeze(self._conditions),
            _freeze(self._principal_block()),
        )

    def merged_with(self, other: PolicyStatement) -> PolicyStatement:
        if self.merge_key() != other.merge_key():
            raise ValueError('Only statements with the same effect, actions, conditions and principals can be merged')
        merged = PolicyStatement(
            effect=self._effect,
            actions=self._actions,
            resources=[*self._resources, *other.resources],
            principals=self._principals,
            conditions=self.conditions,
        )
        return merged.freeze()

    def render(self, context: ResolveContext) -> Any:
        principal_block = {key: _collapse(_unique(context.resolve(values))) for key, values in self._principal_block().items()}
        resources = _unique(context.resolve(self._resources))
        return {
            'Action': _collapse(list(self._actions)),
            'Condition': self._conditions or None,
            'Effect': self._effect.value,
            'Principal': principal_block or None,
            'Resource': _collapse(resources),
        }

    def describe(self) -> str:
        return f'PolicyStatement({self._effect.value} {", ".join(self._actions)})'

    def __repr__(self) -> str:
        return f'<{self.describe()} resources={list(self._resources)!r}>'


def merge_statements(statements: Iterable[PolicyStatement]) -> list[PolicyStatement]:
    """
    Merge statements that only differ in their resources.

    Statements with the same effect, the same set of actions, identical conditions and identical principals
    are combined into one statement whose resources are the union of theirs. Statements with different
    conditions are never merged, even if the conditions would not conflict.
    """
    merged: list[PolicyStatement] = []
    for statement in statements:
        key = statement.merge_key()
        for index, candidate in enumerate(merged):
            if candidate.merge_key() == key:
                merged[index] = candidate.merged_with(statement)
                break
        else:
            merged.append(statement)
    return merged


class PolicyDocument(Resolvable):
    def __init__(self, statements: Optional[Iterable[PolicyStatement]] = None):
        self._statements: CapturedList[PolicyStatement] = CapturedList(name='policy statements')
        if statements:
            self.add_statements(*statements)

    @property
    def is_empty(self) -> bool:
        return len(self._statements) == 0

    @property
    def statements(self) -> tuple[PolicyStatement, ...]:
        return tuple(self._statements)

    def add_statements(self, *statements: PolicyStatement) -> None:
        for statement in statements:
            statement.freeze()
        merged = merge_statements([*self._statements, *statements])
        self._statements.clear()
        self._statements.extend(merged)

    def render(self, context: ResolveContext) -> Any:
        return {'Version': POLICY_VERSION, 'Statement': self._statements.snapshot()}

    def describe(self) -> str:
        return f'PolicyDocument({len(self._statements)} statements)'

    def to_json(self) -> str:
        return json.dumps(resolve(self), indent=2)


class IRole(IResource, IPrincipal, IGrantable):
    role_arn: ArnValue
    role_name: ArnValue

    @abc.abstractmethod
    def grant(self, grantee: IGrantable, *actions: str) -> Grant:
        ...

    def grant_pass_role(self, grantee: IGrantable) -> Grant:
        return self.grant(grantee, 'iam:PassRole')


class Policy(Resource):
    """An AWS::IAM::Policy attached to one or more roles"""

    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        policy_name: Optional[str] = None,
        statements: Optional[Iterable[PolicyStatement]] = None,
        roles: Optional[Iterable[IRole]] = None,
    ):
        super().__init__(scope, id)
        self.document = PolicyDocument(statements)
        self._roles: CapturedList[IRole] = CapturedList(name='policy roles', owner=self)
        for role in roles or []:
            self.attach_to_role(role)
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::IAM::Policy',
            properties={
                'PolicyName': policy_name or self.node.unique_id,
                'PolicyDocument': self.document,
                'Roles': _RoleNames(self._roles),
            },
        )

    def add_statements(self, *statements: PolicyStatement) -> None:
        self.document.add_statements(*statements)

    def attach_to_role(self, role: IRole) -> None:
        if any(role is existing for existing in self._roles):
            return
        self._roles.append(role)

    def validate(self) -> list[str]:
        errors = []
        if self.document.is_empty:
            errors.append('Policy must contain at least one statement')
        if len(self._roles) == 0:
            errors.append('Policy must be attached to at least one role')
        return errors


class _RoleNames(Resolvable):
    def __init__(self, roles: CapturedList[IRole]):
        self._roles = roles

    def render(self, context: ResolveContext) -> Any:
        return [role.role_name for role in self._roles.snapshot() or []]


class Role(Resource, IRole):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        assumed_by: IPrincipal,
        role_name: Optional[str] = None,
        managed_policy_arns: Optional[list[ArnValue]] = None,
        path: Optional[str] = None,
    ):
        super().__init__(scope, id)
        self.assumed_by = assumed_by
        self.assume_role_policy = PolicyDocument([PolicyStatement(actions=['sts:AssumeRole'], principals=[assumed_by])])
        self._default_policy: Optional[Policy] = None
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::IAM::Role',
            properties={
                'AssumeRolePolicyDocument': self.assume_role_policy,
                'ManagedPolicyArns': managed_policy_arns,
                'Path': path,
                'RoleName': role_name,
            },
        )
        self.role_arn = self.resource.get_att('Arn')
        self.role_name = self.resource.ref

    @classmethod
    def from_role_arn(cls, scope: IConstruct, id: str, role_arn: ArnValue) -> IRole:
        return _ImportedRole(scope, id, role_arn)

    @property
    def grant_principal(self) -> IPrincipal:
        return self

    @property
    def policy_fragment(self) -> dict[str, list[Any]]:
        return ArnPrincipal(self.role_arn).policy_fragment

    @property
    def default_policy(self) -> Optional[Policy]:
        return self._default_policy

    def add_to_policy(self, statement: PolicyStatement) -> bool:
        if self._default_policy is None:
            self._default_policy = Policy(self, 'DefaultPolicy', roles=[self])
        self._default_policy.add_statements(statement)
        return True

    def grant(self, grantee: IGrantable, *actions: str) -> Grant:
        return Grant.add_to_principal(grantee, actions=list(actions), resource_arns=[self.role_arn])


class _ImportedRole(Resource, IRole):
    _ownership_mode = OwnershipMode.IMPORTED

    def __init__(self, scope: IConstruct, id: str, role_arn: ArnValue):
        super().__init__(scope, id)
        self.role_arn = role_arn
        # role names may carry a path (role/service-role/Name), the name is the last segment
        resource_name = parse_arn(role_arn).resource_name
        if isinstance(resource_name, str):
            resource_name = resource_name.split('/')[-1]
        self.role_name = resource_name

    @property
    def grant_principal(self) -> IPrincipal:
        return self

    @property
    def policy_fragment(self) -> dict[str, list[Any]]:
        return ArnPrincipal(self.role_arn).policy_fragment

    def add_to_policy(self, statement: PolicyStatement) -> bool:
        # no policy resource can be attached to a role owned elsewhere
        return False

    def grant(self, grantee: IGrantable, *actions: str) -> Grant:
        return Grant.add_to_principal(grantee, actions=list(actions), resource_arns=[self.role_arn])


class IResourceWithPolicy(IResource):
    @abc.abstractmethod
    def add_to_resource_policy(self, statement: PolicyStatement) -> bool:
        ...


class Grant:
    """The outcome of granting permissions: which statement went where"""

    def __init__(
        self,
        *,
        principal_statement: Optional[PolicyStatement] = None,
        resource_statement: Optional[PolicyStatement] = None,
    ):
        self.principal_statement = principal_statement
        self.resource_statement = resource_statement

    @property
    def success(self) -> bool:
        return self.principal_statement is not None or self.resource_statement is not None

    @classmethod
    def add_to_principal(cls, grantee: IGrantable, *, actions: list[str], resource_arns: list[ArnValue]) -> Grant:
        statement = PolicyStatement(actions=actions, resources=resource_arns)
        added = grantee.grant_principal.add_to_policy(statement)
        return cls(principal_statement=statement if added else None)

    @classmethod
    def add_to_principal_or_resource(
        cls,
        grantee: IGrantable,
        *,
        actions: list[str],
        resource_arns: list[ArnValue],
        resource: IResourceWithPolicy,
    ) -> Grant:
        """Add the permission to the grantee's policy, falling back to the resource's policy"""
        result = cls.add_to_principal(grantee, actions=actions, resource_arns=resource_arns)
        if result.success:
            return result
        statement = PolicyStatement(actions=actions, resources=resource_arns, principals=[grantee.grant_principal])
        added = resource.add_to_resource_policy(statement)
        return cls(resource_statement=statement if added else None)

    def __repr__(self) -> str:
        return f'Grant(principal_statement={self.principal_statement!r}, resource_statement={self.resource_statement!r})'
