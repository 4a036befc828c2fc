"""Unit tests for topics, queues, functions and the subscriptions between them."""

from __future__ import annotations

import pytest

from synthkit.awslambda import Code
from synthkit.awslambda import Function
from synthkit.awslambda import Runtime
from synthkit.errors import DuplicateIdError
from synthkit.errors import UnsupportedOnImportError
from synthkit.iam import PolicyStatement
from synthkit.iam import Role
from synthkit.iam import ServicePrincipal
from synthkit.sns import EmailSubscriptionOptions
from synthkit.sns import SubscriptionProtocol
from synthkit.sns import Topic
from synthkit.sqs import DeadLetterQueue
from synthkit.sqs import Queue
from synthkit.synth import synthesize

TOPIC_ARN = 'arn:aws:sns:us-east-1:123456789012:alerts'
QUEUE_ARN = 'arn:aws:sqs:us-east-1:123456789012:jobs'
FUNCTION_ARN = 'arn:aws:lambda:us-east-1:123456789012:function:handler'


@pytest.fixture
def function(stack):
    return Function(stack, 'Handler', code=Code.from_inline('def handler(event, context): pass'), handler='index.handler', runtime=Runtime.PYTHON_3_12)


class TestQueue:
    def test_fifo_is_inferred_from_name(self, stack):
        queue = Queue(stack, 'Orders', queue_name='orders.fifo')

        properties = synthesize(stack).resources[stack.get_logical_id(queue.resource)]['Properties']

        assert queue.fifo
        assert properties == {'QueueName': 'orders.fifo', 'FifoQueue': True}

    def test_fifo_name_must_end_in_fifo(self, stack):
        with pytest.raises(ValueError):
            Queue(stack, 'Orders', queue_name='orders', fifo=True)

    def test_dead_letter_queue(self, stack):
        dlq = Queue(stack, 'DeadLetters')
        queue = Queue(stack, 'Jobs', dead_letter_queue=DeadLetterQueue(queue=dlq, max_receive_count=3))

        properties = synthesize(stack).resources[stack.get_logical_id(queue.resource)]['Properties']

        assert properties['RedrivePolicy'] == {
            'deadLetterTargetArn': {'Fn::GetAtt': [stack.get_logical_id(dlq.resource), 'Arn']},
            'maxReceiveCount': 3,
        }

    def test_grant_goes_to_principal_policy(self, stack):
        queue = Queue(stack, 'Jobs')
        role = Role(stack, 'Worker', assumed_by=ServicePrincipal('ecs-tasks.amazonaws.com'))

        grant = queue.grant_consume_messages(role)

        assert grant.principal_statement is not None
        assert grant.resource_statement is None
        assert 'sqs:ReceiveMessage' in grant.principal_statement.actions

    def test_grant_to_service_principal_goes_to_resource_policy(self, stack):
        queue = Queue(stack, 'Jobs')

        grant = queue.grant_send_messages(ServicePrincipal('events.amazonaws.com'))

        document = synthesize(stack)
        (policy,) = document.find_resources('AWS::SQS::QueuePolicy').values()
        assert grant.resource_statement is not None
        assert policy['Properties']['Queues'] == [{'Ref': stack.get_logical_id(queue.resource)}]
        assert policy['Properties']['PolicyDocument']['Statement'][0]['Principal'] == {'Service': 'events.amazonaws.com'}

    def test_imported_queue(self, stack):
        queue = Queue.from_queue_arn(stack, 'Imported', QUEUE_ARN)

        assert queue.queue_name == 'jobs'
        assert queue.is_imported
        assert not queue.grant_send_messages(ServicePrincipal('events.amazonaws.com')).success
        assert synthesize(stack).resources == {}


class TestTopicSubscriptions:
    def test_subscribe_queue(self, stack):
        """GIVEN a topic and a queue
        WHEN the queue is subscribed to the topic
        THEN a subscription is created under the queue and the queue policy lets the topic send messages
        """
        topic = Topic(stack, 'Events')
        queue = Queue(stack, 'Jobs')

        subscription = topic.subscribe_queue(queue, raw_message_delivery=True)

        document = synthesize(stack)
        topic_ref = {'Ref': stack.get_logical_id(topic.resource)}
        queue_arn = {'Fn::GetAtt': [stack.get_logical_id(queue.resource), 'Arn']}
        assert subscription.node.path == 'TestStack/Jobs/EventsSubscription'
        assert document.resources[stack.get_logical_id(subscription.resource)]['Properties'] == {
            'Endpoint': queue_arn,
            'Protocol': 'sqs',
            'TopicArn': topic_ref,
            'RawMessageDelivery': True,
        }
        (policy,) = document.find_resources('AWS::SQS::QueuePolicy').values()
        assert policy['Properties']['PolicyDocument']['Statement'] == [
            {
                'Action': 'sqs:SendMessage',
                'Condition': {'ArnEquals': {'aws:SourceArn': topic_ref}},
                'Effect': 'Allow',
                'Principal': {'Service': 'sns.amazonaws.com'},
                'Resource': queue_arn,
            }
        ]

    def test_subscribing_twice_raises(self, stack):
        topic = Topic(stack, 'Events')
        queue = Queue(stack, 'Jobs')
        topic.subscribe_queue(queue)

        with pytest.raises(DuplicateIdError):
            topic.subscribe_queue(queue)

    def test_subscribe_lambda_adds_permission(self, stack, function):
        topic = Topic(stack, 'Events')

        topic.subscribe_lambda(function)

        document = synthesize(stack)
        (permission,) = document.find_resources('AWS::Lambda::Permission').values()
        assert permission['Properties'] == {
            'Action': 'lambda:InvokeFunction',
            'FunctionName': {'Fn::GetAtt': [stack.get_logical_id(function.resource), 'Arn']},
            'Principal': 'sns.amazonaws.com',
            'SourceArn': {'Ref': stack.get_logical_id(topic.resource)},
        }
        assert len(document.find_resources('AWS::SNS::Subscription')) == 1

    def test_subscribe_imported_lambda_skips_permission(self, stack):
        topic = Topic(stack, 'Events')
        function = Function.from_function_arn(stack, 'Imported', FUNCTION_ARN)

        topic.subscribe_lambda(function)

        document = synthesize(stack)
        assert document.find_resources('AWS::Lambda::Permission') == {}
        assert len(document.find_resources('AWS::SNS::Subscription')) == 1

    def test_email_and_url_subscriptions(self, stack):
        topic = Topic(stack, 'Events')

        email = topic.subscribe_email('Ops', 'ops@example.com', EmailSubscriptionOptions(json_format=True))
        url = topic.subscribe_url('Hook', 'https://example.com/hook')

        assert email.protocol.value == 'email-json'
        assert url.protocol.value == 'https'
        with pytest.raises(ValueError):
            topic.subscribe_url('Bad', 'ftp://example.com')

    def test_raw_delivery_not_allowed_for_email(self, stack):
        topic = Topic(stack, 'Events')

        topic.subscribe_url('Hook', 'https://example.com/hook', raw_message_delivery=True)

        with pytest.raises(ValueError):
            topic.subscribe('Mail', 'ops@example.com', SubscriptionProtocol.EMAIL, raw_message_delivery=True)

    def test_imported_topic_resource_policy_is_a_no_op(self, stack):
        """GIVEN a topic imported by ARN
        WHEN publishing is granted to a service principal
        THEN no topic policy is synthesized and the grant reports failure
        """
        topic = Topic.from_topic_arn(stack, 'Imported', TOPIC_ARN)

        grant = topic.grant_publish(ServicePrincipal('events.amazonaws.com'))

        assert not grant.success
        assert topic.topic_name == 'alerts'
        assert synthesize(stack).resources == {}

    def test_grant_publish_to_role(self, stack):
        topic = Topic(stack, 'Events')
        role = Role(stack, 'Publisher', assumed_by=ServicePrincipal('lambda.amazonaws.com'))

        topic.grant_publish(role)

        document = synthesize(stack)
        (policy,) = document.find_resources('AWS::IAM::Policy').values()
        assert policy['Properties']['PolicyDocument']['Statement'] == [
            {'Action': 'sns:Publish', 'Effect': 'Allow', 'Resource': {'Ref': stack.get_logical_id(topic.resource)}}
        ]


class TestFunction:
    def test_default_role_and_dependencies(self, stack, function):
        """GIVEN a function without an explicit role
        WHEN it is synthesized
        THEN a service role is created and the function depends on the role and its policy
        """
        function.add_to_role_policy(PolicyStatement(actions=['sqs:SendMessage'], resources=['*']))

        document = synthesize(stack)
        resource = document.resources[stack.get_logical_id(function.resource)]
        role_id = stack.get_logical_id(function.role.resource)
        policy_id = stack.get_logical_id(function.role.default_policy.resource)
        assert resource['DependsOn'] == sorted([role_id, policy_id])
        assert resource['Properties']['Role'] == {'Fn::GetAtt': [role_id, 'Arn']}
        assert resource['Properties']['Runtime'] == 'python3.12'
        assert resource['Properties']['Code'] == {'ZipFile': 'def handler(event, context): pass'}

    def test_grant_invoke(self, stack, function):
        caller = Role(stack, 'Caller', assumed_by=ServicePrincipal('states.amazonaws.com'))

        assert function.grant_invoke(caller).success

    def test_imported_function_has_no_grant_principal(self, stack):
        function = Function.from_function_arn(stack, 'Imported', FUNCTION_ARN)

        assert function.function_name == 'handler'
        with pytest.raises(UnsupportedOnImportError):
            function.grant_principal

    def test_code_from_bucket(self):
        assert Code.from_bucket('artifacts', 'handler.zip').to_code_property() == {
            'S3Bucket': 'artifacts',
            'S3Key': 'handler.zip',
            'S3ObjectVersion': None,
        }
        with pytest.raises(ValueError):
            Code.from_inline('')
