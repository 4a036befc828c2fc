"""Tests for the command line interface and the app builder."""

from __future__ import annotations

import json

import pytest
import yaml

from synthkit.app.main import create_app
from synthkit.app.main import write_documents
from synthkit.main import main

MANIFEST = '''\
version: "1"
name: orders
environments:
  - dev
  - name: prod
    account: "123456789012"
    regions: [us-east-1, eu-west-2]
regions:
  - us-east-1
resources:
  default:
    queues:
      orders:
        queue_name: "orders-{{ environment_name }}"
'''


def _run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.mark.cli
class TestSynthCommand:
    def test_templates_written_per_stack(self, write_manifest, tmp_path):
        """GIVEN a manifest with two environments, one of them in two regions
        WHEN synth is run with an output directory
        THEN one template per stack is written and the command exits with 0
        """
        path = write_manifest(MANIFEST)
        out = tmp_path / 'out'

        assert _run(['synth', path, '-o', str(out)]) == 0

        assert sorted(p.name for p in out.iterdir()) == [
            'orders-eu-west-2-prod.template.json',
            'orders-us-east-1-dev.template.json',
            'orders-us-east-1-prod.template.json',
        ]
        template = json.loads((out / 'orders-us-east-1-dev.template.json').read_text())
        (queue,) = template['Resources'].values()
        assert queue['Properties']['QueueName'] == 'orders-dev'

    def test_single_stack_to_stdout(self, write_manifest, capsys):
        path = write_manifest(MANIFEST)

        assert _run(['synth', path, '--environment', 'dev']) == 0

        template = json.loads(capsys.readouterr().out)
        assert list(template) == ['Resources']

    def test_several_stacks_to_stdout_as_yaml(self, write_manifest, capsys):
        path = write_manifest(MANIFEST)

        assert _run(['synth', path, '--environment', 'prod', '--format', 'yaml']) == 0

        out = capsys.readouterr().out
        assert '# orders-us-east-1-prod\n' in out
        assert '# orders-eu-west-2-prod\n' in out
        assert yaml.safe_load(out.split('# orders-eu-west-2-prod\n')[1])['Resources']

    def test_invalid_manifest_exits_with_1(self, write_manifest, capsys):
        path = write_manifest('version: "1"\nname: orders\n')

        assert _run(['synth', path]) == 1

        assert capsys.readouterr().err.startswith('error:')

    def test_missing_manifest_exits_with_1(self, tmp_path, capsys):
        assert _run(['synth', str(tmp_path / 'missing.yaml')]) == 1

        assert 'error:' in capsys.readouterr().err


@pytest.mark.cli
class TestInitCommand:
    def test_standalone_manifest_synthesizes(self, tmp_path, capsys):
        """GIVEN an empty directory
        WHEN init is run and the generated manifest is synthesized
        THEN a stack is produced for each environment and region of the starter manifest
        """
        assert _run(['init', '--name', 'demo', '--directory', str(tmp_path)]) == 0
        manifest = tmp_path / 'demo-manifest.yaml'
        assert manifest.exists()

        out = tmp_path / 'out'
        assert _run(['synth', str(manifest), '-o', str(out)]) == 0

        assert sorted(p.name for p in out.iterdir()) == [
            'demo-eu-west-2-production.template.json',
            'demo-us-east-1-dev.template.json',
            'demo-us-east-1-production.template.json',
            'demo-us-east-1-staging.template.json',
        ]
        template = json.loads((out / 'demo-us-east-1-dev.template.json').read_text())
        assert template['Description'] == 'demo resources'
        assert 'JobsQueueUrl' in template['Outputs']

    def test_init_never_overwrites(self, tmp_path, capsys):
        assert _run(['init', '--name', 'demo', '--directory', str(tmp_path)]) == 0

        assert _run(['init', '--name', 'demo', '--directory', str(tmp_path)]) == 1

        assert 'already exists' in capsys.readouterr().err

    def test_app_template(self, tmp_path):
        assert _run(['init', '--template', 'app', '--name', 'my-app', '--directory', str(tmp_path)]) == 0

        assert (tmp_path / 'app.py').exists()
        assert (tmp_path / 'my_app' / '__init__.py').exists()
        assert 'class MyAppStack(ManifestStack)' in (tmp_path / 'my_app' / 'my_app_stack.py').read_text()
        assert (tmp_path / 'my_app' / 'my-app-manifest.yaml').exists()


@pytest.mark.cli
class TestSchemaCommand:
    def test_schema_outfile(self, tmp_path):
        outfile = tmp_path / 'schema.json'

        assert _run(['schema', '--indent', '2', '-o', str(outfile)]) == 0

        assert json.loads(outfile.read_text())['title'] == 'Manifest'


@pytest.mark.cli
class TestCreateApp:
    def test_region_falls_back_to_environment_variable(self, write_manifest, monkeypatch):
        monkeypatch.setenv('AWS_DEFAULT_REGION', 'ap-south-1')
        path = write_manifest('version: "1"\nname: orders\nenvironments: [dev]\n')

        app = create_app([path])

        assert [stack.stack_name for stack in app.stacks] == ['orders-ap-south-1-dev']

    def test_region_is_required(self, write_manifest, monkeypatch):
        monkeypatch.delenv('AWS_DEFAULT_REGION', raising=False)
        path = write_manifest('version: "1"\nname: orders\nenvironments: [dev]\n')

        with pytest.raises(ValueError):
            create_app([path])

    def test_filters_and_account_override(self, write_manifest):
        path = write_manifest(MANIFEST)

        app = create_app([path], environment='prod', region='eu-west-2', account='210987654321')

        (stack,) = app.stacks
        assert stack.stack_name == 'orders-eu-west-2-prod'
        assert stack.account == '210987654321'
        assert stack.region == 'eu-west-2'

    def test_no_matching_stacks(self, write_manifest, caplog):
        path = write_manifest(MANIFEST)

        app = create_app([path], environment='staging')

        assert app.stacks == []
        assert 'no stacks matched' in caplog.text

    def test_write_documents_returns_paths(self, write_manifest, tmp_path):
        app = create_app([write_manifest(MANIFEST)], environment='dev')

        written = write_documents(app.synth(), output_format='yaml', output_dir=str(tmp_path / 'out'))

        assert [p.name for p in written] == ['orders-us-east-1-dev.template.yaml']
        assert yaml.safe_load(written[0].read_text())['Resources']
