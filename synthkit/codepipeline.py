from __future__ import annotations

import abc
import enum
import json
import logging
from typing import Any
from typing import Optional

from .construct import Construct
from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import Resource
from .core import Stack
from .iam import IRole
from .iam import PolicyStatement
from .iam import Role
from .iam import ServicePrincipal
from .tokens import CapturedList
from .tokens import Token


class Artifact:
    """An output of one pipeline action consumed by another"""

    def __init__(self, name: str):
        if not name:
            raise ValueError('Artifacts must have a name')
        self.name = name

    def at_path(self, file_name: str) -> ArtifactPath:
        return ArtifactPath(self, file_name)

    def __repr__(self) -> str:
        return f'Artifact({self.name!r})'


class ArtifactPath:
    def __init__(self, artifact: Artifact, file_name: str):
        self.artifact = artifact
        self.file_name = file_name

    @property
    def location(self) -> str:
        return f'{self.artifact.name}::{self.file_name}'


class ActionCategory(enum.Enum):
    SOURCE = 'Source'
    BUILD = 'Build'
    TEST = 'Test'
    APPROVAL = 'Approval'
    DEPLOY = 'Deploy'
    INVOKE = 'Invoke'


class Action(abc.ABC):
    """
    A pipeline action.

    An action is attached to exactly one stage. On attachment it is bound: it receives a construct scope
    (``<pipeline>/<stage>/<action name>``) for any resources it needs and the pipeline role it may grant
    permissions to.
    """

    def __init__(
        self,
        *,
        action_name: str,
        category: ActionCategory,
        provider: str,
        owner: str = 'AWS',
        version: str = '1',
        inputs: Optional[list[Artifact]] = None,
        outputs: Optional[list[Artifact]] = None,
        run_order: int = 1,
    ):
        if run_order < 1 or run_order > 999:
            raise ValueError(f'run_order must be between 1 and 999, got {run_order}')
        self.action_name = action_name
        self.category = category
        self.provider = provider
        self.owner = owner
        self.version = version
        self.inputs = list(inputs or [])
        self.outputs = list(outputs or [])
        self.run_order = run_order
        self.configuration: Optional[dict[str, Any]] = None
        self.scope: Optional[IConstruct] = None

    def _attach(self, scope: IConstruct, role: IRole) -> None:
        if self.scope is not None:
            raise ValueError(f'Action {self.action_name!r} is already attached to {self.scope.node.path}')
        self.scope = scope
        self.configuration = self.bind(scope, role)

    @abc.abstractmethod
    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        """Grant the permissions this action needs and return its configuration"""
        ...

    def render(self) -> dict[str, Any]:
        return {
            'ActionTypeId': {
                'Category': self.category,
                'Owner': self.owner,
                'Provider': self.provider,
                'Version': self.version,
            },
            'Configuration': self.configuration,
            'InputArtifacts': [{'Name': artifact.name} for artifact in self.inputs] or None,
            'Name': self.action_name,
            'OutputArtifacts': [{'Name': artifact.name} for artifact in self.outputs] or None,
            'RunOrder': self.run_order,
        }


class CloudFormationCapabilities(enum.Enum):
    NONE = ''
    ANONYMOUS_IAM = 'CAPABILITY_IAM'
    NAMED_IAM = 'CAPABILITY_NAMED_IAM'
    AUTO_EXPAND = 'CAPABILITY_AUTO_EXPAND'


def _stack_arn(scope: IConstruct, stack_name: str) -> ArnValue:
    return Stack.of(scope).format_arn(service='cloudformation', resource='stack', resource_name=f'{stack_name}/*')


class CloudFormationAction(Action):
    def __init__(self, *, action_name: str, stack_name: str, run_order: int = 1, inputs: Optional[list[Artifact]] = None):
        super().__init__(
            action_name=action_name,
            category=ActionCategory.DEPLOY,
            provider='CloudFormation',
            inputs=inputs,
            run_order=run_order,
        )
        self.stack_name = stack_name


class CloudFormationExecuteChangeSetAction(CloudFormationAction):
    """Execute a change set created by an earlier action"""

    def __init__(self, *, action_name: str, stack_name: str, change_set_name: str, run_order: int = 1):
        super().__init__(action_name=action_name, stack_name=stack_name, run_order=run_order)
        self.change_set_name = change_set_name

    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        role.add_to_policy(
            PolicyStatement(
                actions=['cloudformation:ExecuteChangeSet'],
                resources=[_stack_arn(scope, self.stack_name)],
                conditions={'StringEquals': {'cloudformation:ChangeSetName': self.change_set_name}},
            )
        )
        return {
            'ActionMode': 'CHANGE_SET_EXECUTE',
            'StackName': self.stack_name,
            'ChangeSetName': self.change_set_name,
        }


class CloudFormationDeployAction(CloudFormationAction):
    """
    Base class for actions that let CloudFormation change a stack.

    CloudFormation performs the change with a deployment role. Unless one is supplied, a role assumed by
    CloudFormation is created in the action's scope; with ``admin_permissions`` it is allowed every action.
    The pipeline role is allowed to pass the deployment role.
    """

    def __init__(
        self,
        *,
        action_name: str,
        stack_name: str,
        admin_permissions: bool,
        deployment_role: Optional[IRole] = None,
        capabilities: Optional[list[CloudFormationCapabilities]] = None,
        parameter_overrides: Optional[dict[str, Any]] = None,
        template_configuration: Optional[ArtifactPath] = None,
        inputs: Optional[list[Artifact]] = None,
        run_order: int = 1,
    ):
        inputs = list(inputs or [])
        if template_configuration is not None and template_configuration.artifact not in inputs:
            inputs.append(template_configuration.artifact)
        super().__init__(action_name=action_name, stack_name=stack_name, run_order=run_order, inputs=inputs)
        self.admin_permissions = admin_permissions
        self._deployment_role = deployment_role
        if capabilities is None:
            capabilities = [CloudFormationCapabilities.NAMED_IAM if admin_permissions else CloudFormationCapabilities.ANONYMOUS_IAM]
        self.capabilities = capabilities
        self.parameter_overrides = parameter_overrides
        self.template_configuration = template_configuration

    @property
    def deployment_role(self) -> IRole:
        if self._deployment_role is None:
            raise ValueError(f'Action {self.action_name!r} is not attached to a pipeline yet, its deployment role does not exist')
        return self._deployment_role

    def add_to_deployment_role_policy(self, statement: PolicyStatement) -> bool:
        return self.deployment_role.add_to_policy(statement)

    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        if self._deployment_role is None:
            self._deployment_role = Role(scope, 'Role', assumed_by=ServicePrincipal('cloudformation.amazonaws.com'))
            if self.admin_permissions:
                self._deployment_role.add_to_policy(PolicyStatement(actions=['*'], resources=['*']))
        role.add_to_policy(PolicyStatement(actions=['iam:PassRole'], resources=[self._deployment_role.role_arn]))
        capabilities = ','.join(c.value for c in self.capabilities if c is not CloudFormationCapabilities.NONE)
        return {
            'StackName': self.stack_name,
            'RoleArn': self._deployment_role.role_arn,
            'Capabilities': capabilities or None,
            'ParameterOverrides': json.dumps(self.parameter_overrides) if self.parameter_overrides else None,
            'TemplateConfiguration': self.template_configuration.location if self.template_configuration is not None else None,
        }


class CloudFormationCreateReplaceChangeSetAction(CloudFormationDeployAction):
    """Create a change set, replacing it if one with the same name exists"""

    def __init__(self, *, change_set_name: str, template_path: ArtifactPath, **kwargs: Any):
        kwargs['inputs'] = [template_path.artifact, *(kwargs.get('inputs') or [])]
        super().__init__(**kwargs)
        self.change_set_name = change_set_name
        self.template_path = template_path

    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        configuration = super().bind(scope, role)
        role.add_to_policy(
            PolicyStatement(
                actions=[
                    'cloudformation:CreateChangeSet',
                    'cloudformation:DeleteChangeSet',
                    'cloudformation:DescribeChangeSet',
                    'cloudformation:DescribeStacks',
                ],
                resources=[_stack_arn(scope, self.stack_name)],
                conditions={'StringEqualsIfExists': {'cloudformation:ChangeSetName': self.change_set_name}},
            )
        )
        return {
            'ActionMode': 'CHANGE_SET_REPLACE',
            'ChangeSetName': self.change_set_name,
            'TemplatePath': self.template_path.location,
            **configuration,
        }


class CloudFormationCreateUpdateStackAction(CloudFormationDeployAction):
    """Create the stack if it does not exist, update it otherwise"""

    def __init__(self, *, template_path: ArtifactPath, replace_on_failure: bool = False, **kwargs: Any):
        kwargs['inputs'] = [template_path.artifact, *(kwargs.get('inputs') or [])]
        super().__init__(**kwargs)
        self.template_path = template_path
        self.replace_on_failure = replace_on_failure

    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        configuration = super().bind(scope, role)
        actions = ['cloudformation:DescribeStack*', 'cloudformation:CreateStack', 'cloudformation:UpdateStack']
        if self.replace_on_failure:
            actions.append('cloudformation:DeleteStack')
        role.add_to_policy(PolicyStatement(actions=actions, resources=[_stack_arn(scope, self.stack_name)]))
        return {
            'ActionMode': 'REPLACE_ON_FAILURE' if self.replace_on_failure else 'CREATE_UPDATE',
            'TemplatePath': self.template_path.location,
            **configuration,
        }


class CloudFormationDeleteStackAction(CloudFormationDeployAction):
    def bind(self, scope: IConstruct, role: IRole) -> dict[str, Any]:
        configuration = super().bind(scope, role)
        role.add_to_policy(
            PolicyStatement(
                actions=['cloudformation:DescribeStack*', 'cloudformation:DeleteStack'],
                resources=[_stack_arn(scope, self.stack_name)],
            )
        )
        return {'ActionMode': 'DELETE_ONLY', **configuration}


class Stage(Construct):
    def __init__(self, pipeline: Pipeline, stage_name: str):
        super().__init__(pipeline, stage_name)
        self.pipeline = pipeline
        self._actions: CapturedList[Action] = CapturedList(name='stage actions', owner=self)

    @property
    def stage_name(self) -> str:
        return self.node.id

    @property
    def actions(self) -> list[Action]:
        return list(self._actions)

    def add_action(self, action: Action) -> None:
        logging.debug(f'attaching action {action.action_name} to {self.node.path}')
        if action.scope is not None:
            raise ValueError(f'Action {action.action_name!r} is already attached to {action.scope.node.path}')
        # a rejected action must not end up in the stage
        action._attach(Construct(self, action.action_name), self.pipeline.role)
        self._actions.append(action)

    def render(self) -> dict[str, Any]:
        return {'Actions': [action.render() for action in self._actions.snapshot()], 'Name': self.stage_name}

    def validate(self) -> list[str]:
        if len(self._actions) == 0:
            return [f'Stage {self.stage_name} must contain at least one action']
        return []


class Pipeline(Resource):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        artifact_bucket_name: ArnValue,
        role: Optional[IRole] = None,
        pipeline_name: Optional[str] = None,
        restart_execution_on_update: Optional[bool] = None,
    ):
        super().__init__(scope, id)
        if role is None:
            role = Role(self, 'Role', assumed_by=ServicePrincipal('codepipeline.amazonaws.com'))
        self.role = role
        self._stages: CapturedList[Stage] = CapturedList(name='pipeline stages', owner=self)
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::CodePipeline::Pipeline',
            properties={
                'ArtifactStore': {'Location': artifact_bucket_name, 'Type': 'S3'},
                'Name': pipeline_name,
                'RestartExecutionOnUpdate': restart_execution_on_update,
                'RoleArn': role.role_arn,
                'Stages': Token.lazy(lambda: [stage.render() for stage in self._stages.snapshot()], source=self, display_hint='stages'),
            },
        )
        self.resource.node.add_dependency(role)
        self.pipeline_name = self.resource.ref
        self.pipeline_arn = self.stack.format_arn(service='codepipeline', resource=self.pipeline_name, sep='')

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    def add_stage(self, stage_name: str, actions: Optional[list[Action]] = None) -> Stage:
        stage = Stage(self, stage_name)
        self._stages.append(stage)
        for action in actions or []:
            stage.add_action(action)
        return stage

    def validate(self) -> list[str]:
        if len(self._stages) < 2:
            return [f'Pipeline must have at least two stages, got {len(self._stages)}']
        return []
