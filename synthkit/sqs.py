from __future__ import annotations

import abc
import logging
from typing import Optional

import pydantic

from .construct import IConstruct
from .core import ArnValue
from .core import CfnResource
from .core import Fn
from .core import OwnershipMode
from .core import Resource
from .core import parse_arn
from .iam import Grant
from .iam import IGrantable
from .iam import IResourceWithPolicy
from .iam import PolicyDocument
from .iam import PolicyStatement


class IQueue(IResourceWithPolicy):
    queue_arn: ArnValue
    queue_url: ArnValue
    queue_name: ArnValue

    @abc.abstractmethod
    def grant(self, grantee: IGrantable, *actions: str) -> Grant:
        ...


class DeadLetterQueue(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True)

    queue: IQueue
    max_receive_count: int = pydantic.Field(..., ge=1)


class QueuePolicy(Resource):
    def __init__(self, scope: IConstruct, id: str, *, queues: list[IQueue]):
        super().__init__(scope, id)
        self.document = PolicyDocument()
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::SQS::QueuePolicy',
            properties={
                'PolicyDocument': self.document,
                'Queues': [queue.queue_url for queue in queues],
            },
        )


class QueueBase(Resource, IQueue):
    _auto_create_policy = True

    def __init__(self, scope: IConstruct, id: str):
        super().__init__(scope, id)
        self._policy: Optional[QueuePolicy] = None

    def add_to_resource_policy(self, statement: PolicyStatement) -> bool:
        """
        Add a statement to the queue's resource policy.

        A QueuePolicy is created on first use for queues defined in this app. For imported queues this is a
        no-op and False is returned.
        """
        if self._policy is None and self._auto_create_policy:
            self._policy = QueuePolicy(self, 'Policy', queues=[self])
        if self._policy is None:
            logging.debug(f'not adding {statement!r} to imported queue {self.node.path}')
            return False
        self._policy.document.add_statements(statement)
        return True

    def grant(self, grantee: IGrantable, *actions: str) -> Grant:
        return Grant.add_to_principal_or_resource(grantee, actions=list(actions), resource_arns=[self.queue_arn], resource=self)

    def grant_send_messages(self, grantee: IGrantable) -> Grant:
        return self.grant(grantee, 'sqs:SendMessage', 'sqs:GetQueueAttributes', 'sqs:GetQueueUrl')

    def grant_consume_messages(self, grantee: IGrantable) -> Grant:
        return self.grant(
            grantee,
            'sqs:ReceiveMessage',
            'sqs:ChangeMessageVisibility',
            'sqs:GetQueueUrl',
            'sqs:DeleteMessage',
            'sqs:GetQueueAttributes',
        )

    def grant_purge(self, grantee: IGrantable) -> Grant:
        return self.grant(grantee, 'sqs:PurgeQueue', 'sqs:GetQueueAttributes', 'sqs:GetQueueUrl')


class Queue(QueueBase):
    def __init__(
        self,
        scope: IConstruct,
        id: str,
        *,
        queue_name: Optional[str] = None,
        fifo: Optional[bool] = None,
        content_based_deduplication: Optional[bool] = None,
        delivery_delay_sec: Optional[int] = None,
        max_message_size_bytes: Optional[int] = None,
        receive_message_wait_time_sec: Optional[int] = None,
        retention_period_sec: Optional[int] = None,
        visibility_timeout_sec: Optional[int] = None,
        dead_letter_queue: Optional[DeadLetterQueue] = None,
    ):
        super().__init__(scope, id)
        if queue_name is not None and queue_name.endswith('.fifo') and fifo is None:
            fifo = True
        if fifo and queue_name is not None and not queue_name.endswith('.fifo'):
            raise ValueError(f'FIFO queue names must end in ".fifo", got {queue_name!r}')
        self.fifo = bool(fifo)
        self.dead_letter_queue = dead_letter_queue
        redrive_policy = None
        if dead_letter_queue is not None:
            redrive_policy = {
                'deadLetterTargetArn': dead_letter_queue.queue.queue_arn,
                'maxReceiveCount': dead_letter_queue.max_receive_count,
            }
        self.resource = CfnResource(
            self,
            'Resource',
            type='AWS::SQS::Queue',
            properties={
                'QueueName': queue_name,
                'FifoQueue': fifo,
                'ContentBasedDeduplication': content_based_deduplication,
                'DelaySeconds': delivery_delay_sec,
                'MaximumMessageSize': max_message_size_bytes,
                'ReceiveMessageWaitTimeSeconds': receive_message_wait_time_sec,
                'MessageRetentionPeriod': retention_period_sec,
                'VisibilityTimeout': visibility_timeout_sec,
                'RedrivePolicy': redrive_policy,
            },
        )
        self.queue_arn = self.resource.get_att('Arn')
        self.queue_url = self.resource.ref
        self.queue_name = self.resource.get_att('QueueName')

    @classmethod
    def from_queue_arn(cls, scope: IConstruct, id: str, queue_arn: ArnValue) -> IQueue:
        return _ImportedQueue(scope, id, queue_arn)


class _ImportedQueue(QueueBase):
    _ownership_mode = OwnershipMode.IMPORTED
    _auto_create_policy = False

    def __init__(self, scope: IConstruct, id: str, queue_arn: ArnValue):
        super().__init__(scope, id)
        components = parse_arn(queue_arn, sep=':')
        self.queue_arn = queue_arn
        self.queue_name = components.resource
        self.queue_url = Fn.join(
            '', ['https://sqs.', components.region, '.', self.stack.url_suffix, '/', components.account, '/', components.resource]
        )
