from __future__ import annotations

import abc
import enum
import logging
from typing import Any
from typing import Optional

from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import Fn
from .core import IResource
from .core import OwnershipMode
from .core import Resource
from .core import parse_arn
from .errors import UnsupportedOnImportError
from .iam import Grant
from .iam import IGrantable
from .iam import IPrincipal
from .iam import IRole
from .iam import PolicyStatement
from .iam import Role
from .iam import ServicePrincipal


class Runtime(enum.Enum):
    PYTHON_3_10 = 'python3.10'
    PYTHON_3_11 = 'python3.11'
    PYTHON_3_12 = 'python3.12'
    NODEJS_18_X = 'nodejs18.x'
    NODEJS_20_X = 'nodejs20.x'
    JAVA_17 = 'java17'
    JAVA_21 = 'java21'
    PROVIDED_AL2023 = 'provided.al2023'


class Code:
    """Where the function code comes from"""

    def __init__(self, properties: dict[str, Any]):
        self._properties = properties

    @classmethod
    def from_inline(cls, source: str) -> Code:
        if not source:
            raise ValueError('Inline source code cannot be empty')
        return cls({'ZipFile': source})

    @classmethod
    def from_bucket(cls, bucket_name: ArnValue, key: str, object_version: Optional[str] = None) -> Code:
        return cls({'S3Bucket': bucket_name, 'S3Key': key, 'S3ObjectVersion': object_version})

    def to_code_property(self) -> dict[str, Any]:
        return dict(self._properties)


class IFunction(IResource, IGrantable):
    function_arn: ArnValue
    function_name: ArnValue

    @abc.abstractmethod
    def add_permission(
        self,
        id: str,
        *,
        principal: IPrincipal,
        action: str = 'lambda:InvokeFunction',
        source_arn: Optional[ArnValue] = None,
        source_account: Optional[ArnValue] = None,
    ) -> bool:
        ...


def _principal_identifier(principal: IPrincipal) -> Any:
    fragment = principal.policy_fragment
    for key in ('Service', 'AWS'):
        if key in fragment and len(fragment[key]) == 1:
            return fragment[key][0]
    raise ValueError(f'Cannot use {principal!r} as a lambda permission principal')


class Function(Resource, IFunction):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        code: Code,
        handler: str,
        runtime: Runtime,
        role: Optional[IRole] = None,
        function_name: Optional[str] = None,
        description: Optional[str] = None,
        timeout_sec: Optional[int] = None,
        memory_size: Optional[int] = None,
        environment: Optional[dict[str, str]] = None,
    ):
        super().__init__(scope, id)
        if role is None:
            basic_execution = Fn.join(
                '', ['arn:', self.stack.partition, ':iam::aws:policy/service-role/AWSLambdaBasicExecutionRole']
            )
            role = Role(self, 'ServiceRole', assumed_by=ServicePrincipal('lambda.amazonaws.com'), managed_policy_arns=[basic_execution])
        self.role = role
        self.runtime = runtime
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::Lambda::Function',
            properties={
                'Code': code.to_code_property(),
                'Handler': handler,
                'Role': role.role_arn,
                'Runtime': runtime,
                'FunctionName': function_name,
                'Description': description,
                'Timeout': timeout_sec,
                'MemorySize': memory_size,
                'Environment': {'Variables': dict(environment)} if environment else None,
            },
        )
        # the role and its policies must exist before the function can be created
        self.resource.node.add_dependency(role)
        self.function_arn = self.resource.get_att('Arn')
        self.function_name = self.resource.ref

    @classmethod
    def from_function_arn(cls, scope: IConstruct, id: str, function_arn: ArnValue) -> IFunction:
        return _ImportedFunction(scope, id, function_arn)

    @property
    def grant_principal(self) -> IPrincipal:
        return self.role.grant_principal

    def add_to_role_policy(self, statement: PolicyStatement) -> bool:
        return self.role.add_to_policy(statement)

    def add_permission(
        self,
        id: str,
        *,
        principal: IPrincipal,
        action: str = 'lambda:InvokeFunction',
        source_arn: Optional[ArnValue] = None,
        source_account: Optional[ArnValue] = None,
    ) -> bool:
        CfnResource(
            self,
            id,
            type='AWS::Lambda::Permission',
            properties={
                'Action': action,
                'FunctionName': self.function_arn,
                'Principal': _principal_identifier(principal),
                'SourceAccount': source_account,
                'SourceArn': source_arn,
            },
        )
        return True

    def grant_invoke(self, grantee: IGrantable) -> Grant:
        return Grant.add_to_principal(grantee, actions=['lambda:InvokeFunction'], resource_arns=[self.function_arn])


class _ImportedFunction(Resource, IFunction):
    _ownership_mode = OwnershipMode.IMPORTED

    def __init__(self, scope: IConstruct, id: str, function_arn: ArnValue):
        super().__init__(scope, id)
        self.function_arn = function_arn
        self.function_name = parse_arn(function_arn, sep=':').resource_name

    @property
    def grant_principal(self) -> IPrincipal:
        raise UnsupportedOnImportError(f'{self.node.path}: the execution role of an imported function is not known')

    def add_permission(
        self,
        id: str,
        *,
        principal: IPrincipal,
        action: str = 'lambda:InvokeFunction',
        source_arn: Optional[ArnValue] = None,
        source_account: Optional[ArnValue] = None,
    ) -> bool:
        logging.debug(f'not adding permission {id} to imported function {self.node.path}')
        return False

    def grant_invoke(self, grantee: IGrantable) -> Grant:
        return Grant.add_to_principal(grantee, actions=['lambda:InvokeFunction'], resource_arns=[self.function_arn])
