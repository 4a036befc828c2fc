from __future__ import annotations

import abc
from typing import Any
from typing import Optional

import pydantic

from .construct import Construct
from .construct import IConstruct
from .core import CfnResource
from .core import Resource
from .iam import IRole
from .iam import PolicyStatement
from .iam import Role
from .iam import ServicePrincipal
from .sns import ITopic

SNS_PUBLISH_RESOURCE_ARN = 'arn:aws:states:::sns:publish'


class JsonPath:
    """A reference to a value in the state input, e.g. ``$.detail.message``"""

    def __init__(self, path: str):
        if path != '$' and not path.startswith('$.'):
            raise ValueError(f'JSONPath expressions must start with "$.", got {path!r}')
        self.path = path

    @classmethod
    def string_at(cls, path: str) -> JsonPath:
        return cls(path)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, JsonPath) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f'JsonPath({self.path!r})'


class TaskInput:
    def __init__(self, value: Any):
        self.value = value

    @classmethod
    def from_text(cls, text: str) -> TaskInput:
        return cls(text)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> TaskInput:
        return cls(obj)

    @classmethod
    def from_data_at(cls, path: str) -> TaskInput:
        """Use a part of the execution data as the task input"""
        return cls(JsonPath(path))


def render_object(obj: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """
    Render a parameters object for the States language.

    Keys whose value is a JsonPath get a ``.$`` suffix so the value is read from the state input. None
    values are dropped.
    """
    if obj is None:
        return None
    rendered: dict[str, Any] = {}
    for key, value in obj.items():
        if value is None:
            continue
        if isinstance(value, JsonPath):
            rendered[f'{key}.$'] = value.path
        elif isinstance(value, dict):
            rendered[key] = render_object(value)
        elif isinstance(value, list):
            rendered[key] = [render_object(item) if isinstance(item, dict) else item for item in value]
        else:
            rendered[key] = value
    return rendered


class StepFunctionsTaskConfig(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True)

    resource_arn: str
    policy_statements: list[PolicyStatement] = pydantic.Field(default_factory=list)
    parameters: Optional[dict[str, Any]] = None


class IStepFunctionsTask(abc.ABC):
    @abc.abstractmethod
    def bind(self, task: Task) -> StepFunctionsTaskConfig:
        ...


class PublishToTopic(IStepFunctionsTask):
    """Publish a message to an SNS topic from a state machine"""

    def __init__(
        self,
        topic: ITopic,
        *,
        message: TaskInput,
        subject: Optional[str] = None,
        message_per_subscription_type: bool = False,
    ):
        self.topic = topic
        self.message = message
        self.subject = subject
        self.message_per_subscription_type = message_per_subscription_type

    def bind(self, task: Task) -> StepFunctionsTaskConfig:
        return StepFunctionsTaskConfig(
            resource_arn=SNS_PUBLISH_RESOURCE_ARN,
            policy_statements=[PolicyStatement().add_action('sns:Publish').add_resource(self.topic.topic_arn)],
            parameters={
                'TopicArn': self.topic.topic_arn,
                **render_object(
                    {
                        'Message': self.message.value,
                        'MessageStructure': 'json' if self.message_per_subscription_type else None,
                        'Subject': self.subject,
                    }
                ),
            },
        )


class Task(Construct):
    """A Task state. The task is bound on construction and its policy statements are added to ``role`` if one is given."""

    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        task: IStepFunctionsTask,
        role: Optional[IRole] = None,
        comment: Optional[str] = None,
        input_path: Optional[str] = None,
        output_path: Optional[str] = None,
        result_path: Optional[str] = None,
        timeout_sec: Optional[int] = None,
    ):
        super().__init__(scope, id)
        self.task = task
        self.comment = comment
        self.input_path = input_path
        self.output_path = output_path
        self.result_path = result_path
        self.timeout_sec = timeout_sec
        self.config = task.bind(self)
        if role is not None:
            self.attach_to_role(role)

    @property
    def state_name(self) -> str:
        return self.node.id

    @property
    def policy_statements(self) -> list[PolicyStatement]:
        return list(self.config.policy_statements)

    def attach_to_role(self, role: IRole) -> None:
        for statement in self.config.policy_statements:
            role.add_to_policy(statement)

    def to_state_json(self, next_state: Optional[str] = None) -> dict[str, Any]:
        return {
            'Type': 'Task',
            'Comment': self.comment,
            'Resource': self.config.resource_arn,
            'Parameters': self.config.parameters,
            'InputPath': self.input_path,
            'OutputPath': self.output_path,
            'ResultPath': self.result_path,
            'TimeoutSeconds': self.timeout_sec,
            'Next': next_state,
            'End': True if next_state is None else None,
        }


class StateMachine(Resource):
    """A state machine running its tasks one after another"""

    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        tasks: list[Task],
        role: Optional[IRole] = None,
        state_machine_name: Optional[str] = None,
    ):
        super().__init__(scope, id)
        if not tasks:
            raise ValueError('A state machine needs at least one task')
        if role is None:
            role = Role(self, 'Role', assumed_by=ServicePrincipal('states.amazonaws.com'))
        self.role = role
        self.tasks = list(tasks)
        for task in self.tasks:
            task.attach_to_role(role)
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::StepFunctions::StateMachine',
            properties={
                'Definition': self.definition(),
                'RoleArn': role.role_arn,
                'StateMachineName': state_machine_name,
            },
        )
        self.resource.node.add_dependency(role)
        self.state_machine_arn = self.resource.ref
        self.state_machine_name = self.resource.get_att('Name')

    def definition(self) -> dict[str, Any]:
        states = {}
        for index, task in enumerate(self.tasks):
            next_state = self.tasks[index + 1].state_name if index + 1 < len(self.tasks) else None
            if task.state_name in states:
                raise ValueError(f'State names must be unique within a state machine, {task.state_name!r} is used twice')
            states[task.state_name] = task.to_state_json(next_state)
        return {'StartAt': self.tasks[0].state_name, 'States': states}
