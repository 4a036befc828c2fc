"""Unit tests for pipelines and CloudFormation deployment actions."""

from __future__ import annotations

import pytest

from synthkit.codepipeline import Artifact
from synthkit.codepipeline import CloudFormationCapabilities
from synthkit.codepipeline import CloudFormationCreateReplaceChangeSetAction
from synthkit.codepipeline import CloudFormationCreateUpdateStackAction
from synthkit.codepipeline import CloudFormationDeleteStackAction
from synthkit.codepipeline import CloudFormationExecuteChangeSetAction
from synthkit.codepipeline import Pipeline
from synthkit.errors import DuplicateIdError
from synthkit.errors import SynthesisError
from synthkit.iam import Role
from synthkit.iam import ServicePrincipal
from synthkit.synth import synthesize
from synthkit.tokens import resolve


def _stack_arn(stack_name):
    return {
        'Fn::Join': [
            '',
            ['arn:', {'Ref': 'AWS::Partition'}, ':cloudformation:', {'Ref': 'AWS::Region'}, ':', {'Ref': 'AWS::AccountId'}, f':stack/{stack_name}/*'],
        ]
    }


@pytest.fixture
def source():
    return Artifact('Source')


@pytest.fixture
def pipeline_role(stack):
    return Role(stack, 'PipelineRole', assumed_by=ServicePrincipal('codepipeline.amazonaws.com'))


@pytest.fixture
def pipeline(stack, pipeline_role):
    return Pipeline(stack, 'Pipeline', artifact_bucket_name='artifacts', role=pipeline_role)


class TestChangeSetActions:
    def test_statements_of_two_actions_merge(self, stack, pipeline, pipeline_role, source):
        """GIVEN two change set actions on different stacks with the same change set name
        WHEN both are attached to the pipeline
        THEN the pipeline role policy holds one PassRole statement and one change set statement covering both
        """
        action_a = CloudFormationCreateReplaceChangeSetAction(
            action_name='ActionA',
            stack_name='StackA',
            change_set_name='ChangeSet',
            template_path=source.at_path('a.template.json'),
            admin_permissions=False,
        )
        action_b = CloudFormationCreateReplaceChangeSetAction(
            action_name='ActionB',
            stack_name='StackB',
            change_set_name='ChangeSet',
            template_path=source.at_path('b.template.json'),
            admin_permissions=False,
        )

        pipeline.add_stage('Deploy', [action_a, action_b])

        statements = resolve(pipeline_role.default_policy.document)['Statement']
        assert statements == [
            {
                'Action': 'iam:PassRole',
                'Effect': 'Allow',
                'Resource': [
                    {'Fn::GetAtt': [stack.get_logical_id(action_a.deployment_role.resource), 'Arn']},
                    {'Fn::GetAtt': [stack.get_logical_id(action_b.deployment_role.resource), 'Arn']},
                ],
            },
            {
                'Action': [
                    'cloudformation:CreateChangeSet',
                    'cloudformation:DeleteChangeSet',
                    'cloudformation:DescribeChangeSet',
                    'cloudformation:DescribeStacks',
                ],
                'Condition': {'StringEqualsIfExists': {'cloudformation:ChangeSetName': 'ChangeSet'}},
                'Effect': 'Allow',
                'Resource': [_stack_arn('StackA'), _stack_arn('StackB')],
            },
        ]

    def test_configuration(self, stack, pipeline, source):
        action = CloudFormationCreateReplaceChangeSetAction(
            action_name='Prepare',
            stack_name='App',
            change_set_name='AppChanges',
            template_path=source.at_path('app.template.json'),
            admin_permissions=True,
            parameter_overrides={'Stage': 'prod'},
        )
        pipeline.add_stage('Deploy', [action])

        assert action.configuration['ActionMode'] == 'CHANGE_SET_REPLACE'
        assert action.configuration['TemplatePath'] == 'Source::app.template.json'
        assert action.configuration['Capabilities'] == CloudFormationCapabilities.NAMED_IAM.value
        assert action.configuration['ParameterOverrides'] == '{"Stage": "prod"}'
        assert action.inputs == [source]
        deployment_statements = resolve(action.deployment_role.default_policy.document)['Statement']
        assert deployment_statements == [{'Action': '*', 'Effect': 'Allow', 'Resource': '*'}]

    def test_execute_uses_string_equals(self, pipeline, pipeline_role):
        execute = CloudFormationExecuteChangeSetAction(action_name='Execute', stack_name='App', change_set_name='AppChanges')
        pipeline.add_stage('Execute', [execute])

        (statement,) = resolve(pipeline_role.default_policy.document)['Statement']
        assert statement['Action'] == 'cloudformation:ExecuteChangeSet'
        assert statement['Condition'] == {'StringEquals': {'cloudformation:ChangeSetName': 'AppChanges'}}

    def test_deployment_role_before_attachment(self, source):
        action = CloudFormationCreateUpdateStackAction(
            action_name='Deploy', stack_name='App', template_path=source.at_path('t.json'), admin_permissions=False
        )

        with pytest.raises(ValueError):
            action.deployment_role

    def test_action_cannot_be_attached_twice(self, pipeline, source):
        action = CloudFormationCreateUpdateStackAction(
            action_name='Deploy', stack_name='App', template_path=source.at_path('t.json'), admin_permissions=False
        )
        pipeline.add_stage('First', [action])

        with pytest.raises(ValueError):
            pipeline.add_stage('Second', [action])

    def test_rejected_action_is_not_added_to_stage(self, pipeline, source):
        """GIVEN a stage holding an action named A
        WHEN a second action named A, then an action already attached elsewhere, are added to it
        THEN both are rejected and the stage still holds only the first action
        """
        first = CloudFormationExecuteChangeSetAction(action_name='A', stack_name='App', change_set_name='Changes')
        stage = pipeline.add_stage('Execute', [first])
        attached = CloudFormationCreateUpdateStackAction(
            action_name='Deploy', stack_name='App', template_path=source.at_path('t.json'), admin_permissions=False
        )
        pipeline.add_stage('Deploy', [attached])

        with pytest.raises(DuplicateIdError):
            stage.add_action(CloudFormationExecuteChangeSetAction(action_name='A', stack_name='Other', change_set_name='Changes'))
        with pytest.raises(ValueError):
            stage.add_action(attached)

        assert stage.actions == [first]
        assert stage.node.try_find_child('Deploy') is None
        assert [action['Name'] for action in stage.render()['Actions']] == ['A']

    def test_replace_on_failure_adds_delete_stack(self, pipeline, pipeline_role, source):
        action = CloudFormationCreateUpdateStackAction(
            action_name='Deploy', stack_name='App', template_path=source.at_path('t.json'), admin_permissions=False, replace_on_failure=True
        )
        pipeline.add_stage('Deploy', [action])

        statements = resolve(pipeline_role.default_policy.document)['Statement']
        assert action.configuration['ActionMode'] == 'REPLACE_ON_FAILURE'
        assert 'cloudformation:DeleteStack' in statements[1]['Action']

    def test_delete_stack(self, pipeline, pipeline_role):
        action = CloudFormationDeleteStackAction(action_name='Teardown', stack_name='App', admin_permissions=False)
        pipeline.add_stage('Teardown', [action])

        statements = resolve(pipeline_role.default_policy.document)['Statement']
        assert action.configuration['ActionMode'] == 'DELETE_ONLY'
        assert statements[1] == {
            'Action': ['cloudformation:DescribeStack*', 'cloudformation:DeleteStack'],
            'Effect': 'Allow',
            'Resource': _stack_arn('App'),
        }


class TestPipeline:
    def test_pipeline_needs_two_stages(self, stack, pipeline, source):
        action = CloudFormationCreateUpdateStackAction(
            action_name='Deploy', stack_name='App', template_path=source.at_path('t.json'), admin_permissions=False
        )
        pipeline.add_stage('Deploy', [action])

        with pytest.raises(SynthesisError) as exc_info:
            synthesize(stack)

        assert 'at least two stages' in str(exc_info.value)

    def test_stages_render_in_order(self, stack, pipeline, source):
        prepare = CloudFormationCreateReplaceChangeSetAction(
            action_name='Prepare', stack_name='App', change_set_name='Changes', template_path=source.at_path('t.json'), admin_permissions=False
        )
        execute = CloudFormationExecuteChangeSetAction(action_name='Execute', stack_name='App', change_set_name='Changes', run_order=2)
        pipeline.add_stage('Prepare', [prepare])
        pipeline.add_stage('Execute', [execute])

        document = synthesize(stack)

        properties = document.resources[stack.get_logical_id(pipeline.resource)]['Properties']
        assert [stage['Name'] for stage in properties['Stages']] == ['Prepare', 'Execute']
        assert properties['Stages'][1]['Actions'][0]['RunOrder'] == 2
        assert properties['Stages'][0]['Actions'][0]['ActionTypeId'] == {
            'Category': 'Deploy',
            'Owner': 'AWS',
            'Provider': 'CloudFormation',
            'Version': '1',
        }
        assert properties['ArtifactStore'] == {'Location': 'artifacts', 'Type': 'S3'}

    def test_empty_stage_fails_validation(self, stack, pipeline):
        pipeline.add_stage('Empty')
        pipeline.add_stage('AlsoEmpty')

        with pytest.raises(SynthesisError) as exc_info:
            synthesize(stack)

        assert 'at least one action' in str(exc_info.value)
