from __future__ import annotations

import abc
import enum
import logging
from typing import Optional

import pydantic

from .awslambda import IFunction
from .cloudwatch import IAlarm
from .cloudwatch import IAlarmAction
from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import OwnershipMode
from .core import Resource
from .core import parse_arn
from .errors import DuplicateIdError
from .iam import Grant
from .iam import IGrantable
from .iam import IResourceWithPolicy
from .iam import PolicyDocument
from .iam import PolicyStatement
from .iam import ServicePrincipal
from .sqs import IQueue


class SubscriptionProtocol(enum.Enum):
    HTTP = 'http'
    HTTPS = 'https'
    EMAIL = 'email'
    EMAIL_JSON = 'email-json'
    SMS = 'sms'
    SQS = 'sqs'
    APPLICATION = 'application'
    LAMBDA = 'lambda'


RAW_DELIVERY_PROTOCOLS = (SubscriptionProtocol.HTTP, SubscriptionProtocol.HTTPS, SubscriptionProtocol.SQS)


class EmailSubscriptionOptions(pydantic.BaseModel):
    json_format: bool = pydantic.Field(False, description='Send the full notification JSON rather than just the message text')


class Subscription(Resource):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        topic: ITopic,
        endpoint: ArnValue,
        protocol: SubscriptionProtocol,
        raw_message_delivery: Optional[bool] = None,
    ):
        super().__init__(scope, id)
        if raw_message_delivery and protocol not in RAW_DELIVERY_PROTOCOLS:
            raise ValueError(f'Raw message delivery can only be enabled for HTTP/S and SQS subscriptions, not {protocol.value}')
        self.topic = topic
        self.protocol = protocol
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::SNS::Subscription',
            properties={
                'Endpoint': endpoint,
                'Protocol': protocol,
                'TopicArn': topic.topic_arn,
                'RawMessageDelivery': raw_message_delivery,
            },
        )


class TopicPolicy(Resource):
    def __init__(self, scope: IConstruct, id: str, *, topics: list[ITopic]):
        super().__init__(scope, id)
        self.document = PolicyDocument()
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::SNS::TopicPolicy',
            properties={
                'PolicyDocument': self.document,
                'Topics': [topic.topic_arn for topic in topics],
            },
        )


class ITopic(IResourceWithPolicy, IAlarmAction):
    topic_arn: ArnValue
    topic_name: ArnValue

    @abc.abstractmethod
    def subscribe(
        self, name: str, endpoint: ArnValue, protocol: SubscriptionProtocol, raw_message_delivery: Optional[bool] = None
    ) -> Subscription:
        ...

    @abc.abstractmethod
    def grant_publish(self, grantee: IGrantable) -> Grant:
        ...


class TopicBase(Resource, ITopic):
    """Operations shared by topics defined in this app and imported topics"""

    _auto_create_policy = True

    def __init__(self, scope: IConstruct, id: str):
        super().__init__(scope, id)
        self._policy: Optional[TopicPolicy] = None

    def subscribe(
        self, name: str, endpoint: ArnValue, protocol: SubscriptionProtocol, raw_message_delivery: Optional[bool] = None
    ) -> Subscription:
        return Subscription(self, name, topic=self, endpoint=endpoint, protocol=protocol, raw_message_delivery=raw_message_delivery)

    def _subscription_id_for(self, consumer: IConstruct) -> str:
        subscription_id = self.node.id + 'Subscription'
        if consumer.node.try_find_child(subscription_id) is not None:
            raise DuplicateIdError(f'A subscription between the topic {self.node.id} and {consumer.node.id} already exists')
        return subscription_id

    def subscribe_queue(self, queue: IQueue, raw_message_delivery: Optional[bool] = None) -> Subscription:
        """
        Subscribe a queue to this topic.

        The subscription is created under the queue and the queue's resource policy is extended to let this
        topic send messages to it.
        """
        subscription = Subscription(
            queue,
            self._subscription_id_for(queue),
            topic=self,
            endpoint=queue.queue_arn,
            protocol=SubscriptionProtocol.SQS,
            raw_message_delivery=raw_message_delivery,
        )
        queue.add_to_resource_policy(
            PolicyStatement()
            .add_resource(queue.queue_arn)
            .add_action('sqs:SendMessage')
            .add_service_principal('sns.amazonaws.com')
            .add_condition('ArnEquals', {'aws:SourceArn': self.topic_arn})
        )
        return subscription

    def subscribe_lambda(self, function: IFunction) -> Subscription:
        subscription = Subscription(
            function,
            self._subscription_id_for(function),
            topic=self,
            endpoint=function.function_arn,
            protocol=SubscriptionProtocol.LAMBDA,
        )
        function.add_permission(self.node.id, source_arn=self.topic_arn, principal=ServicePrincipal('sns.amazonaws.com'))
        return subscription

    def subscribe_email(self, name: str, email_address: str, options: Optional[EmailSubscriptionOptions] = None) -> Subscription:
        protocol = SubscriptionProtocol.EMAIL_JSON if options is not None and options.json_format else SubscriptionProtocol.EMAIL
        return self.subscribe(name, email_address, protocol)

    def subscribe_url(self, name: str, url: str, raw_message_delivery: Optional[bool] = None) -> Subscription:
        if not url.startswith(('http://', 'https://')):
            raise ValueError(f'URL must start with either http:// or https://, got {url!r}')
        protocol = SubscriptionProtocol.HTTPS if url.startswith('https:') else SubscriptionProtocol.HTTP
        return self.subscribe(name, url, protocol, raw_message_delivery=raw_message_delivery)

    def add_to_resource_policy(self, statement: PolicyStatement) -> bool:
        """
        Add a statement to the topic's resource policy.

        A TopicPolicy is created on first use for topics defined in this app. For imported topics this is a
        no-op and False is returned.
        """
        if self._policy is None and self._auto_create_policy:
            self._policy = TopicPolicy(self, 'Policy', topics=[self])
        if self._policy is None:
            logging.debug(f'not adding {statement!r} to imported topic {self.node.path}')
            return False
        self._policy.document.add_statements(statement)
        return True

    def grant_publish(self, grantee: IGrantable) -> Grant:
        return Grant.add_to_principal_or_resource(grantee, actions=['sns:Publish'], resource_arns=[self.topic_arn], resource=self)

    def bind(self, alarm: IAlarm) -> ArnValue:
        return self.topic_arn


class Topic(TopicBase):
    def __init__(self, scope: IConstruct, id: str, *, topic_name: Optional[str] = None, display_name: Optional[str] = None):
        super().__init__(scope, id)
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::SNS::Topic',
            properties={
                'DisplayName': display_name,
                'TopicName': topic_name,
            },
        )
        self.topic_arn = self.resource.ref
        self.topic_name = self.resource.get_att('TopicName')

    @classmethod
    def from_topic_arn(cls, scope: IConstruct, id: str, topic_arn: ArnValue) -> ITopic:
        return _ImportedTopic(scope, id, topic_arn)


class _ImportedTopic(TopicBase):
    _ownership_mode = OwnershipMode.IMPORTED
    _auto_create_policy = False

    def __init__(self, scope: IConstruct, id: str, topic_arn: ArnValue):
        super().__init__(scope, id)
        self.topic_arn = topic_arn
        self.topic_name = parse_arn(topic_arn, sep=':').resource
