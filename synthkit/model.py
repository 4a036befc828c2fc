from __future__ import annotations

import abc
import enum
import functools
import importlib
import json
import logging
import warnings
from functools import singledispatchmethod
from typing import Any
from typing import Optional
from typing import Type
from typing import Union

import jinja2
import pydantic
import yaml

from .autoscaling import AdjustmentTier
from .autoscaling import AdjustmentType
from .autoscaling import IScalableTarget
from .autoscaling import MetricAggregationType
from .autoscaling import ScalableTarget
from .autoscaling import ServiceNamespace
from .autoscaling import StepScalingAction
from .awslambda import Code
from .awslambda import Function
from .awslambda import IFunction
from .awslambda import Runtime
from .cloudwatch import Alarm
from .cloudwatch import ComparisonOperator
from .cloudwatch import IAlarm
from .cloudwatch import Metric
from .cloudwatch import TreatMissingData
from .cloudwatch import Unit
from .construct import IConstruct
from .core import CfnOutput
from .core import Stack
from .errors import CreationDeferredException
from .errors import NotFoundError
from .iam import Effect
from .iam import IGrantable
from .iam import IRole
from .iam import PolicyStatement
from .iam import Role
from .iam import ServicePrincipal
from .sns import EmailSubscriptionOptions
from .sns import Topic
from .sns import TopicBase
from .sqs import DeadLetterQueue
from .sqs import Queue
from .sqs import QueueBase


class ManifestVersion(enum.Enum):
    VER_1 = '1'


class Grantee(pydantic.BaseModel):
    resource_id: str


class EnvironmentProvider:
    def __init__(
        self,
        environment_name: str,
        region: str,
        account: str,
        default_alarm_period_sec: int = 300,
        default_runtime: Union[str, Runtime] = Runtime.PYTHON_3_12,
    ):
        self._account = account
        self._region = region
        self._environment_name: str = environment_name
        self._default_alarm_period_sec = default_alarm_period_sec
        self._default_runtime = Runtime(default_runtime)

    @property
    def environment_name(self) -> str:
        return self._environment_name

    @property
    def region(self) -> str:
        return self._region

    @property
    def account(self) -> str:
        return self._account

    @property
    def default_alarm_period_sec(self) -> int:
        return self._default_alarm_period_sec

    @property
    def default_runtime(self) -> Runtime:
        return self._default_runtime


class BaseResource(pydantic.BaseModel, abc.ABC):
    @abc.abstractmethod
    def to_construct(self, scope: ManifestStack, id: str) -> IConstruct:
        ...


def _lookup_for_creation(scope: ManifestStack, resource_id: str) -> Any:
    try:
        return scope.get_resource(resource_id)
    except KeyError as e:
        raise CreationDeferredException(f'referenced resource {resource_id!r} does not exist yet. Deferring until it is created.') from e


class EmailSubscriptionConfiguration(pydantic.BaseModel):
    address: str
    json_format: bool = False


class UrlSubscriptionConfiguration(pydantic.BaseModel):
    url: str
    raw_message_delivery: Optional[bool] = None


class TopicResource(BaseResource):
    topic_name: Optional[str] = pydantic.Field(None, description='Physical name of the topic. Default: generated by CloudFormation')
    display_name: Optional[str] = pydantic.Field(None, description='A display name for email subscriptions')
    import_arn: Optional[str] = pydantic.Field(
        None, description='Import an existing topic by ARN rather than creating a new one (the resource policy is not managed)'
    )
    subscribe_queues: list[Grantee] = pydantic.Field(default_factory=list, description='Queues to subscribe to this topic')
    subscribe_functions: list[Grantee] = pydantic.Field(default_factory=list, description='Functions to subscribe to this topic')
    email_subscriptions: list[EmailSubscriptionConfiguration] = pydantic.Field(default_factory=list)
    url_subscriptions: list[UrlSubscriptionConfiguration] = pydantic.Field(default_factory=list)
    grant_publish: list[Grantee] = pydantic.Field(default_factory=list)

    def to_construct(self, scope: ManifestStack, id: str) -> TopicBase:
        if self.import_arn is not None:
            return Topic.from_topic_arn(scope, id, self.import_arn)  # type: ignore[return-value]
        return Topic(scope, id, topic_name=self.topic_name, display_name=self.display_name)


class DeadLetterQueueConfiguration(pydantic.BaseModel):
    max_receive_count: int = pydantic.Field(
        ..., description='The number of times a message can be unsuccesfully dequeued before being moved to the dead-letter queue.'
    )
    queue_id: str = pydantic.Field(..., description='Resource id of the queue to use for DLQ')


class QueueResource(BaseResource):
    queue_name: Optional[str] = pydantic.Field(
        None,
        description='A name for the queue. If specified and this is a FIFO queue, must end in the string ".fifo". Default: CloudFormation-generated name',
    )
    fifo: Optional[bool] = pydantic.Field(None, description='Whether this a first-in-first-out (FIFO) queue. Default: false')
    content_based_deduplication: Optional[bool] = None
    delivery_delay_seconds: Optional[int] = pydantic.Field(
        None, description='The time in seconds that the delivery of all messages in the queue is delayed (0 to 900).'
    )
    max_message_size_bytes: Optional[int] = pydantic.Field(None, description='From 1024 bytes (1 KiB) to 262144 bytes (256 KiB).')
    receive_message_wait_time_seconds: Optional[int] = None
    retention_period_seconds: Optional[int] = pydantic.Field(
        None, description='The number of seconds that Amazon SQS retains a message (60 to 1209600). Default: 4 days'
    )
    visibility_timeout_seconds: Optional[int] = pydantic.Field(None, description='Timeout of processing a single message. Default: 30 seconds')
    dead_letter_queue: Optional[DeadLetterQueueConfiguration] = pydantic.Field(
        None, description='Send messages to this queue if they were unsuccessfully dequeued a number of times.'
    )
    import_arn: Optional[str] = pydantic.Field(None, description='Import an existing queue by ARN rather than creating a new one')
    grant_purge: list[Grantee] = pydantic.Field(default_factory=list)
    grant_send_messages: list[Grantee] = pydantic.Field(default_factory=list)
    grant_consume_messages: list[Grantee] = pydantic.Field(default_factory=list)
    grant_full_access: list[Grantee] = pydantic.Field(default_factory=list)

    def to_construct(self, scope: ManifestStack, id: str) -> QueueBase:
        if self.import_arn is not None:
            return Queue.from_queue_arn(scope, id, self.import_arn)  # type: ignore[return-value]
        if self.dead_letter_queue:
            q = _lookup_for_creation(scope, self.dead_letter_queue.queue_id)
            dead_letter_queue = DeadLetterQueue(max_receive_count=self.dead_letter_queue.max_receive_count, queue=q)
        else:
            dead_letter_queue = None

        return Queue(
            scope,
            id,
            queue_name=self.queue_name,
            fifo=self.fifo,
            content_based_deduplication=self.content_based_deduplication,
            delivery_delay_sec=self.delivery_delay_seconds,
            max_message_size_bytes=self.max_message_size_bytes,
            receive_message_wait_time_sec=self.receive_message_wait_time_seconds,
            retention_period_sec=self.retention_period_seconds,
            visibility_timeout_sec=self.visibility_timeout_seconds,
            dead_letter_queue=dead_letter_queue,
        )


class PolicyStatementConfiguration(pydantic.BaseModel):
    effect: Effect = Effect.ALLOW
    actions: list[str]
    resources: list[str] = pydantic.Field(default_factory=lambda: ['*'])

    def to_statement(self) -> PolicyStatement:
        return PolicyStatement(effect=self.effect, actions=self.actions, resources=self.resources)


class RoleResource(BaseResource):
    assumed_by_service: Optional[str] = pydantic.Field(None, description='Service principal allowed to assume the role, e.g. lambda.amazonaws.com')
    role_name: Optional[str] = None
    path: Optional[str] = None
    managed_policy_arns: Optional[list[str]] = None
    statements: list[PolicyStatementConfiguration] = pydantic.Field(default_factory=list, description='Statements added to the default policy')
    import_arn: Optional[str] = pydantic.Field(None, description='Import an existing role by ARN. Statements are not applied to imported roles')

    @pydantic.model_validator(mode='after')
    def _check_principal(self) -> RoleResource:
        if self.import_arn is None and self.assumed_by_service is None:
            raise ValueError('assumed_by_service is required unless the role is imported with import_arn')
        return self

    def to_construct(self, scope: ManifestStack, id: str) -> IRole:
        if self.import_arn is not None:
            return Role.from_role_arn(scope, id, self.import_arn)
        return Role(
            scope,
            id,
            assumed_by=ServicePrincipal(self.assumed_by_service),
            role_name=self.role_name,
            path=self.path,
            managed_policy_arns=self.managed_policy_arns,
        )


class FunctionResource(BaseResource):
    handler: str = 'index.handler'
    runtime: Optional[Runtime] = pydantic.Field(None, description='Default: the runtime configured by the environment provider')
    inline_code: Optional[str] = None
    code_bucket: Optional[str] = None
    code_key: Optional[str] = None
    function_name: Optional[str] = None
    description: Optional[str] = None
    memory_size: Optional[int] = None
    timeout_seconds: Optional[int] = None
    environment: Optional[dict[str, str]] = None
    role_id: Optional[str] = pydantic.Field(None, description='Resource id of a role to use. Default: a new execution role')
    import_arn: Optional[str] = pydantic.Field(None, description='Import an existing function by ARN rather than creating a new one')
    grant_invoke: list[Grantee] = pydantic.Field(default_factory=list)

    @pydantic.model_validator(mode='after')
    def _check_code(self) -> FunctionResource:
        if self.import_arn is None and self.inline_code is None and not (self.code_bucket and self.code_key):
            raise ValueError('one of inline_code or code_bucket/code_key is required')
        return self

    def to_construct(self, scope: ManifestStack, id: str) -> IFunction:
        if self.import_arn is not None:
            return Function.from_function_arn(scope, id, self.import_arn)
        role = _lookup_for_creation(scope, self.role_id) if self.role_id else None
        if self.inline_code is not None:
            code = Code.from_inline(self.inline_code)
        else:
            code = Code.from_bucket(self.code_bucket, self.code_key)
        return Function(
            scope,
            id,
            code=code,
            handler=self.handler,
            runtime=self.runtime or scope.provider.default_runtime,
            role=role,
            function_name=self.function_name,
            description=self.description,
            timeout_sec=self.timeout_seconds,
            memory_size=self.memory_size,
            environment=self.environment,
        )


class ScalableTargetResource(BaseResource):
    service_namespace: Optional[ServiceNamespace] = None
    resource_id: Optional[str] = pydantic.Field(None, description='Identifier of the scaled resource, e.g. service/cluster/service-name')
    scalable_dimension: Optional[str] = pydantic.Field(None, description='e.g. ecs:service:DesiredCount')
    min_capacity: int = 1
    max_capacity: int = 1
    role_id: Optional[str] = None
    import_id: Optional[str] = pydantic.Field(None, description='Import an existing scalable target by id')

    @pydantic.model_validator(mode='after')
    def _check_target(self) -> ScalableTargetResource:
        if self.import_id is None and None in (self.service_namespace, self.resource_id, self.scalable_dimension):
            raise ValueError('service_namespace, resource_id and scalable_dimension are required unless import_id is given')
        return self

    def to_construct(self, scope: ManifestStack, id: str) -> IScalableTarget:
        if self.import_id is not None:
            return ScalableTarget.from_scalable_target_id(scope, id, self.import_id)
        role = _lookup_for_creation(scope, self.role_id) if self.role_id else None
        return ScalableTarget(
            scope,
            id,
            service_namespace=self.service_namespace,
            resource_id=self.resource_id,
            scalable_dimension=self.scalable_dimension,
            min_capacity=self.min_capacity,
            max_capacity=self.max_capacity,
            role=role,
        )


class StepScalingActionResource(BaseResource):
    scaling_target_id: str = pydantic.Field(..., description='Resource id of the scalable target this action scales')
    policy_name: Optional[str] = None
    adjustment_type: Optional[AdjustmentType] = None
    cooldown_seconds: Optional[int] = None
    min_adjustment_magnitude: Optional[int] = None
    metric_aggregation_type: Optional[MetricAggregationType] = None
    adjustments: list[AdjustmentTier] = pydantic.Field(default_factory=list, description='Adjustment tiers, in order')

    def to_construct(self, scope: ManifestStack, id: str) -> StepScalingAction:
        target = _lookup_for_creation(scope, self.scaling_target_id)
        return StepScalingAction(
            scope,
            id,
            scaling_target=target,
            policy_name=self.policy_name,
            adjustment_type=self.adjustment_type,
            cooldown_sec=self.cooldown_seconds,
            min_adjustment_magnitude=self.min_adjustment_magnitude,
            metric_aggregation_type=self.metric_aggregation_type,
        )


class MetricConfiguration(pydantic.BaseModel):
    namespace: str
    metric_name: str
    dimensions: dict[str, str] = pydantic.Field(default_factory=dict)
    period_seconds: Optional[int] = pydantic.Field(None, description='Default: the alarm period configured by the environment provider')
    statistic: str = 'Average'
    unit: Optional[Unit] = None
    label: Optional[str] = None

    def to_metric(self, default_period_sec: int) -> Metric:
        return Metric(
            namespace=self.namespace,
            metric_name=self.metric_name,
            dimensions=self.dimensions,
            period_sec=self.period_seconds or default_period_sec,
            statistic=self.statistic,
            unit=self.unit,
            label=self.label,
        )


class AlarmResource(BaseResource):
    metric: Optional[MetricConfiguration] = None
    threshold: Optional[float] = None
    evaluation_periods: int = 1
    comparison_operator: ComparisonOperator = ComparisonOperator.GREATER_THAN_OR_EQUAL_TO_THRESHOLD
    alarm_name: Optional[str] = None
    alarm_description: Optional[str] = None
    datapoints_to_alarm: Optional[int] = None
    treat_missing_data: Optional[TreatMissingData] = None
    alarm_actions: list[Grantee] = pydantic.Field(default_factory=list, description='Topics or step scaling actions notified when the alarm fires')
    ok_actions: list[Grantee] = pydantic.Field(default_factory=list)
    insufficient_data_actions: list[Grantee] = pydantic.Field(default_factory=list)
    import_arn: Optional[str] = pydantic.Field(None, description='Import an existing alarm by ARN. Actions are not applied to imported alarms')

    @pydantic.model_validator(mode='after')
    def _check_metric(self) -> AlarmResource:
        if self.import_arn is None and (self.metric is None or self.threshold is None):
            raise ValueError('metric and threshold are required unless the alarm is imported with import_arn')
        return self

    def to_construct(self, scope: ManifestStack, id: str) -> IAlarm:
        if self.import_arn is not None:
            return Alarm.from_alarm_arn(scope, id, self.import_arn)
        threshold: Union[int, float] = int(self.threshold) if float(self.threshold).is_integer() else self.threshold
        return Alarm(
            scope,
            id,
            metric=self.metric.to_metric(scope.provider.default_alarm_period_sec),
            threshold=threshold,
            evaluation_periods=self.evaluation_periods,
            comparison_operator=self.comparison_operator,
            alarm_name=self.alarm_name,
            alarm_description=self.alarm_description,
            datapoints_to_alarm=self.datapoints_to_alarm,
            treat_missing_data=self.treat_missing_data,
        )


class ResourcesDefinition(pydantic.BaseModel):
    # resources are created section by section, in this order; references to later sections are deferred
    roles: Optional[dict[str, RoleResource]] = pydantic.Field(default_factory=dict)
    queues: Optional[dict[str, QueueResource]] = pydantic.Field(default_factory=dict)
    topics: Optional[dict[str, TopicResource]] = pydantic.Field(default_factory=dict)
    functions: Optional[dict[str, FunctionResource]] = pydantic.Field(default_factory=dict)
    scalable_targets: Optional[dict[str, ScalableTargetResource]] = pydantic.Field(default_factory=dict)
    step_scaling_actions: Optional[dict[str, StepScalingActionResource]] = pydantic.Field(default_factory=dict)
    alarms: Optional[dict[str, AlarmResource]] = pydantic.Field(default_factory=dict)


class OutputDefinition(pydantic.BaseModel):
    value: str = pydantic.Field(..., description='A resource id, optionally followed by an attribute, e.g. `orders.queue_arn`')
    description: Optional[str] = None
    export_name: Optional[str] = None


class EnvironmentDefinition(pydantic.BaseModel):
    name: str
    regions: Optional[list[str]] = None
    account: Optional[str] = None
    provider_config: Optional[dict[str, Any]] = None


class Manifest(pydantic.BaseModel):
    version: ManifestVersion = pydantic.Field(
        ..., description='The manifest version. Ensures major behaviors remain consistent between tool updates.'
    )
    name: str = pydantic.Field(
        ...,
        description='A short name. This will be used as the stack name as well as for automatic naming of certain resources. Must be unique!',
    )
    description: Optional[str] = pydantic.Field(None, description='Description of the synthesized template')
    resources: dict[str, ResourcesDefinition] = pydantic.Field(default_factory=dict)
    outputs: Optional[dict[str, OutputDefinition]] = pydantic.Field(None, description='Template outputs, keyed by output id')
    environments: Optional[list[Union[str, EnvironmentDefinition]]] = pydantic.Field(
        None,
        description='The environments that are available for deployment. IMPORTANT: removing environments will NOT destroy the stacks. Before removing an entry from this list, destroy the stack FIRST.',
    )

    regions: Optional[list[str]] = pydantic.Field(
        None,
        description='The regions in which to create your stack(s). By default, this list is applied to all environments that do not specify a region list',
    )

    account: Optional[str] = pydantic.Field(
        None,
        description='The default account to use for deployments',
    )

    provider_class: Optional[str] = pydantic.Field(None, description='The environment provider class to use')

    provider_config: dict[str, Any] = pydantic.Field(description='keyword arguments to pass to the provider', default_factory=dict)

    def get_provider_class(self) -> Type[EnvironmentProvider]:
        if self.provider_class is None:
            return EnvironmentProvider
        else:
            module_name, class_name = self.provider_class.rsplit('.', 1)
            mod = importlib.import_module(module_name)
            klass = getattr(mod, class_name)
            if not (isinstance(klass, type) and issubclass(klass, EnvironmentProvider)):
                raise TypeError(f'{self.provider_class} is not an EnvironmentProvider subclass')
            return klass


class ManifestStack(Stack):
    """A stack whose resources are created from a manifest"""

    def __init__(
        self,
        scope: Optional[IConstruct],
        provider: EnvironmentProvider,
        manifest: Manifest,
        **kwargs: Any,
    ):
        if 'account' in kwargs or 'region' in kwargs:
            raise ValueError('account and region cannot be provided to ManifestStack. Environment is defined by the environment provider.')
        if provider.environment_name == 'default':
            raise ValueError('default is a reserved name')

        id = '-'.join(part for part in (manifest.name, provider.region, provider.environment_name) if part)
        kwargs.setdefault('stack_name', id)
        kwargs.setdefault('description', manifest.description)
        super().__init__(scope, id, account=provider.account or None, region=provider.region or None, **kwargs)
        self.manifest = manifest
        self._provider = provider
        self.definitions: dict[str, BaseResource] = {}
        self.resources: dict[str, IConstruct] = {}
        self._create_resources()
        self._configure_resources()
        self._create_outputs()

    @property
    def provider(self) -> EnvironmentProvider:
        return self._provider

    @property
    def environment_name(self) -> str:
        return self._provider.environment_name

    def get_resource(self, resource_id: str) -> Any:
        if '.' in resource_id:
            resource_id, *attrs = resource_id.split('.')
            obj = self.resources[resource_id]
            for attr_name in attrs:
                obj = getattr(obj, attr_name)
            return obj
        return self.resources[resource_id]

    def _lookup(self, referrer: str, resource_id: str) -> Any:
        try:
            return self.get_resource(resource_id)
        except KeyError as e:
            raise NotFoundError(f'{referrer} references unknown resource {resource_id!r}') from e

    def _grantees(self, referrer: str, grantees: list[Grantee]) -> list[IGrantable]:
        return [self._lookup(referrer, grantee.resource_id) for grantee in grantees]

    # dispatches on the type of the definition
    @singledispatchmethod
    def create_resource(self, definition: BaseResource, id: str) -> IConstruct:
        return definition.to_construct(scope=self, id=id)

    @create_resource.register
    def _(self, definition: TopicResource, id: str) -> TopicBase:
        return self.create_topic(id, topic_definition=definition)

    @create_resource.register
    def _(self, definition: QueueResource, id: str) -> QueueBase:
        return self.create_queue(id, queue_definition=definition)

    @create_resource.register
    def _(self, definition: FunctionResource, id: str) -> IFunction:
        return self.create_function(id, function_definition=definition)

    def create_topic(self, id: str, topic_definition: TopicResource) -> TopicBase:
        return topic_definition.to_construct(scope=self, id=id)

    def create_queue(self, id: str, queue_definition: QueueResource) -> QueueBase:
        return queue_definition.to_construct(scope=self, id=id)

    def create_function(self, id: str, function_definition: FunctionResource) -> IFunction:
        return function_definition.to_construct(scope=self, id=id)

    def _create_resources(self) -> None:
        manifest_resources = self.manifest.resources.get(self.environment_name)
        if manifest_resources is None:
            manifest_resources = ResourcesDefinition()
        deferred = {}
        for resource_type, resources in manifest_resources.__dict__.items():
            for resource_id, resource_definition in (resources or {}).items():
                if resource_id in self.definitions:
                    raise ValueError(f'resource id {resource_id!r} is used more than once in the manifest')
                self.definitions[resource_id] = resource_definition
                logging.debug(f'creating {resource_type} {resource_id}')
                try:
                    self.resources[resource_id] = self.create_resource(resource_definition, resource_id)
                except CreationDeferredException as e:
                    logging.info(f'creation of resource {resource_id} ({type(resource_definition).__name__}) is being deferred. {e}')
                    deferred[resource_id] = resource_definition
                    continue
        while deferred:
            done = []
            logging.info(f'{len(deferred)} deferred resources awaiting creation')
            for resource_id, resource_definition in deferred.items():
                try:
                    logging.debug(f'creating {resource_id}')
                    self.resources[resource_id] = self.create_resource(resource_definition, resource_id)
                    done.append(resource_id)
                except CreationDeferredException as e:
                    logging.info(f'creation of resource {resource_id} ({type(resource_definition).__name__}) is being deferred (again). {e}')
            for d in done:
                del deferred[d]
            if not done and deferred:
                # No progress could be made on deferred resources
                # either a reference to an undefined resource or a cyclical reference
                raise RuntimeError(
                    f'Failure in resolving deferred resources. Possible cyclical reference has occurred. {len(deferred)} resources remaining: {sorted(deferred)}',
                )

    @functools.singledispatchmethod
    def configure_resource(self, resource: Any, definition: BaseResource) -> None:
        return None

    @configure_resource.register
    def configure_topic(self, resource: TopicBase, definition: TopicResource) -> None:
        topic = resource
        for queue in self._grantees(resource.node.id, definition.subscribe_queues):
            topic.subscribe_queue(queue)
        for function in self._grantees(resource.node.id, definition.subscribe_functions):
            topic.subscribe_lambda(function)
        for index, email in enumerate(definition.email_subscriptions):
            topic.subscribe_email(f'Email{index}', email.address, EmailSubscriptionOptions(json_format=email.json_format))
        for index, url in enumerate(definition.url_subscriptions):
            topic.subscribe_url(f'Url{index}', url.url, raw_message_delivery=url.raw_message_delivery)
        for grantable in self._grantees(resource.node.id, definition.grant_publish):
            topic.grant_publish(grantable)

    @configure_resource.register
    def configure_queue(self, resource: QueueBase, definition: QueueResource) -> None:
        queue = resource
        for grantable in self._grantees(resource.node.id, definition.grant_full_access):
            queue.grant_purge(grantable)
            queue.grant_consume_messages(grantable)
            queue.grant_send_messages(grantable)

        for grantable in self._grantees(resource.node.id, definition.grant_purge):
            queue.grant_purge(grantable)
        for grantable in self._grantees(resource.node.id, definition.grant_consume_messages):
            queue.grant_consume_messages(grantable)
        for grantable in self._grantees(resource.node.id, definition.grant_send_messages):
            queue.grant_send_messages(grantable)

    @configure_resource.register
    def configure_role(self, resource: IRole, definition: RoleResource) -> None:
        for statement_definition in definition.statements:
            if not resource.add_to_policy(statement_definition.to_statement()):
                warnings.warn(f'statement {statement_definition.actions} was not added to imported role {resource.node.id}')

    @configure_resource.register
    def configure_function(self, resource: IFunction, definition: FunctionResource) -> None:
        for grantable in self._grantees(resource.node.id, definition.grant_invoke):
            resource.grant_invoke(grantable)

    @configure_resource.register
    def configure_step_scaling_action(self, resource: StepScalingAction, definition: StepScalingActionResource) -> None:
        for tier in definition.adjustments:
            resource.add_adjustment(tier)

    @configure_resource.register
    def configure_alarm(self, resource: IAlarm, definition: AlarmResource) -> None:
        if not isinstance(resource, Alarm):
            if definition.alarm_actions or definition.ok_actions or definition.insufficient_data_actions:
                warnings.warn(f'actions configured for imported alarm {resource.node.id} are ignored')
            return
        referrer = resource.node.id
        if definition.alarm_actions:
            resource.add_alarm_action(*self._grantees(referrer, definition.alarm_actions))
        if definition.ok_actions:
            resource.add_ok_action(*self._grantees(referrer, definition.ok_actions))
        if definition.insufficient_data_actions:
            resource.add_insufficient_data_action(*self._grantees(referrer, definition.insufficient_data_actions))

    def _configure_resources(self) -> None:
        for id, definition in self.definitions.items():
            resource = self.resources[id]
            self.configure_resource(resource, definition)

    def _create_outputs(self) -> None:
        for output_id, output in (self.manifest.outputs or {}).items():
            try:
                value = self.get_resource(output.value)
            except (KeyError, AttributeError) as e:
                raise NotFoundError(f'output {output_id!r} references {output.value!r}, which does not exist') from e
            CfnOutput(self, output_id, value=value, description=output.description, export_name=output.export_name)

    @classmethod
    def from_manifest_file(
        cls, scope: Optional[IConstruct], file_path: str, provider: EnvironmentProvider, loader: Optional[ManifestLoader] = None, **kwargs
    ):
        if loader is None:
            loader = ManifestLoader()
        manifest = loader.load(
            file_path=file_path, environment_name=provider.environment_name, account=provider.account, region=provider.region
        )
        kwargs['manifest'] = manifest
        return cls(scope, provider, **kwargs)

    @classmethod
    def with_dynamic_provider(
        cls,
        scope: Optional[IConstruct],
        file_path: str,
        loader: Optional[ManifestLoader] = None,
        provider_kwargs: Optional[dict[str, Any]] = None,
        **kwargs,
    ):
        if provider_kwargs is None:
            provider_kwargs = {}
        if loader is None:
            loader = ManifestLoader()
        initial_manifest = loader.load(
            file_path=file_path,
            environment_name=provider_kwargs.get('environment_name', ''),
            account=provider_kwargs.get('account', ''),
            region=provider_kwargs.get('region', ''),
        )
        ProviderClass = initial_manifest.get_provider_class()
        provider = ProviderClass(**provider_kwargs)
        manifest = loader.load(
            file_path=file_path, environment_name=provider.environment_name, account=provider.account, region=provider.region
        )
        kwargs['manifest'] = manifest
        return cls(scope, provider, **kwargs)


def _deep_merge(d1: dict[str, Any], d2: dict[str, Any]) -> dict[str, Any]:
    new_dict = {}
    for key, val in d1.items():
        if key not in d2:
            new_dict[key] = val
            continue
        other_val = d2[key]
        if isinstance(val, dict) and isinstance(other_val, dict):
            new_val = _deep_merge(val, other_val)
            new_dict[key] = new_val
        else:
            new_dict[key] = other_val
    for key, val in d2.items():
        if key not in d1:
            new_dict[key] = val
    return new_dict


class ManifestLoader:
    def __init__(self, **kwargs):
        self._kwargs = kwargs

    def _make_context(self, **kwargs) -> dict[str, Any]:
        return dict(self._kwargs, **kwargs)

    def load(self, file_path, environment_name, account: str, region: str, **template_kwargs) -> Manifest:
        with open(file_path, 'r') as f:
            data = f.read()
        return self.loads(data, environment_name=environment_name, account=account, region=region, **template_kwargs)

    def loads(self, data: str, environment_name: str, account: str, region: str, **template_kwargs) -> Manifest:
        jinja_env = self.get_jinja_environment()
        template = jinja_env.from_string(data)
        context = self._make_context(environment_name=environment_name, account=account, region=region, **template_kwargs)
        rendered_data = template.render(context)
        manifest_data = yaml.load(rendered_data, Loader=yaml.SafeLoader)
        if not isinstance(manifest_data, dict):
            raise ValueError(f'manifest must be a mapping, got {type(manifest_data).__name__}')
        resources = manifest_data.pop('resources', None) or {}
        default_resources = resources.pop('default', None) or {}
        environment_resources = resources.pop(environment_name, None) or {}
        environment_merged_resources = _deep_merge(default_resources, environment_resources)
        manifest_data['resources'] = {environment_name: environment_merged_resources}
        manifest = Manifest.model_validate(manifest_data)
        return manifest

    def get_jinja_environment(self) -> jinja2.Environment:
        env = jinja2.Environment(loader=jinja2.BaseLoader(), undefined=jinja2.StrictUndefined)
        return env


def _manifest_schema(indent: int = 4, outfile: Optional[str] = None) -> str:
    schema = json.dumps(Manifest.model_json_schema(), indent=indent)
    if outfile:
        with open(outfile, 'w') as f:
            f.write(schema)
    else:
        print(schema)
    return schema
