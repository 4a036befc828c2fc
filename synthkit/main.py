import argparse
import logging
import os
import pathlib
import sys
from typing import Literal
from typing import Optional

import jinja2
import pydantic

from synthkit.app.main import create_app
from synthkit.app.main import write_documents
from synthkit.errors import SynthKitError
from synthkit.model import _manifest_schema

_MANIFEST_STANDALONE_TEMPLATE = '''\
version: "1"

# the name which is used to uniquely name the cloudformation stack and will appear as in defaults for many resources
# this name must be unique per account/region
name: {name}

description: "{name} resources"


environments:
  - dev
  - staging
  # you can also customize certain attributes per environment, like account or regions
  # this can be useful for solutions deployed to multiple regions
  # or where environments may be separated by account/region for security, regulatory, or other reasons
  - name: production
    account: "123456789012"
    regions:
      - us-east-1
      - eu-west-2
    # you can also configure provider overrides per-environment
    # provider_config:
    #   default_alarm_period_sec: 60



# you may specify specific region(s) in which your stacks will be created
# if omitted, region is determined by the AWS_DEFAULT_REGION environment variable
# if multiple regions are configured, a stack will be created for each combination of region and environment name,
# for each environment that does not specify its regions explicitly
regions:
 - us-east-1

# You can customize the Provider class used
# provider_class: 'app.MyProvider'

# provide provider level configurations:
provider_config:
  default_alarm_period_sec: 300  # period of alarm metrics that do not specify one
  default_runtime: python3.12  # runtime of functions that do not specify one


resources:
  # default configuration of resources for all environments
  default:
    queues:
      jobs:
        queue_name: "{name}-jobs-{{{{ environment_name }}}}"
        visibility_timeout_seconds: 60
        dead_letter_queue:
          queue_id: jobs-dlq
          max_receive_count: 5
      jobs-dlq:
        retention_period_seconds: 1209600
    topics:
      events:
        subscribe_queues:
          - resource_id: jobs
    alarms:
      jobs-backlog:
        metric:
          namespace: AWS/SQS
          metric_name: ApproximateNumberOfMessagesVisible
          dimensions:
            QueueName: "{name}-jobs-{{{{ environment_name }}}}"
        threshold: 100
        evaluation_periods: 3
        alarm_actions:
          - resource_id: events

  # override resource configurations for specific environments
  # hashes are merged with configuration specified in the `default` section
  production:
    queues:
      jobs:
        visibility_timeout_seconds: 300

outputs:
  JobsQueueUrl:
    value: jobs.queue_url
    description: URL of the jobs queue
'''

_MANIFEST_APP_TEMPLATE = '''\
version: "1"

# the name which is used to uniquely name the cloudformation stack and will appear as in defaults for many resources
# this name must be unique per account/region
name: {name}


resources:
  # default configuration of resources for all environments
  default:
    topics:
      events:
        display_name: "{name} events"

  # override resource configurations for specific environments
  # hashes are merged with configuration specified in the `default` section
  production:
    topics:
      events:
        topic_name: "{name}-events"
'''

_APP_TEMPLATE = '''\
#!/usr/bin/env python3
import os
import sys

from synthkit import App
from synthkit import EnvironmentProvider

from {pyname}.{pyname}_stack import {camel_name}Stack


class {camel_name}Provider(EnvironmentProvider):
    ...
    # You can customize defaults by overriding properties in the provider, e.g. default_alarm_period_sec

production_provider = {camel_name}Provider(environment_name='production', account=os.getenv('AWS_ACCOUNT_ID', ''), region=os.getenv('AWS_DEFAULT_REGION', 'us-east-1'))

app = App()
production_stack = {camel_name}Stack.from_manifest_file(app, '{manifest_path}', provider=production_provider)
for stack_name, document in app.synth().items():
    sys.stdout.write(document.to_json())
'''

_APP_STACK_TEMPLATE = '''\
# from synthkit.sqs import Queue

from synthkit import ManifestStack

# from synthkit.model import TopicResource
# from synthkit.sns import TopicBase


class {camel_name}Stack(ManifestStack):
    ...

    # You can customize many things at the stack level by implementing/overriding methods in your stack class
    # although these configurations are all possible just by editing the manifest, it can be useful to
    # have different levels at which customization is possible, as stack classes can be reused across many manifest files, for example.


    # if you wish to add resources or make other modifications in addition to those defined in the manifest file
    # uncomment the following:

    # def __init__(self, *args, **kwargs):
    #     super().__init__(*args, **kwargs)  # perform the creation from manifest
    #
    #     # create an additional resource, just like any other construct
    #     # as an example:
    #     queue = Queue(self, 'MyQueue', visibility_timeout_sec=300)

    # you can also just override specific methods to customize resource creation with manifest definitions
    # for example, to subscribe an email address to every topic in the manifest, you can uncomment the following:

    # def create_topic(self, id: str, topic_definition: TopicResource) -> TopicBase:
    #     topic = super().create_topic(id, topic_definition=topic_definition)
    #     topic.subscribe_email('OpsEmail', 'ops@example.com')
    #     return topic

'''


def _write_new(path: pathlib.Path, content: str) -> None:
    if path.exists():
        raise FileExistsError(f'{path} already exists')
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    logging.info(f'created {path}')


def _init_standalone(name: str, directory: pathlib.Path) -> int:
    manifest_path = directory / f'{name}-manifest.yaml'
    _write_new(manifest_path, _MANIFEST_STANDALONE_TEMPLATE.format(name=name))
    print(f'created {manifest_path}. Run `synthkit synth {manifest_path}` to synthesize it')
    return 0


def _init_app(name: str, directory: pathlib.Path) -> int:
    pyname = name.replace('-', '_')
    camel_name = ''.join(part.title() for part in pyname.split('_'))
    manifest_path = f'{pyname}/{name}-manifest.yaml'
    stack_file = f'{pyname}/{pyname}_stack.py'
    _write_new(directory / pyname / '__init__.py', '')
    _write_new(directory / stack_file, _APP_STACK_TEMPLATE.format(name=name, pyname=pyname, camel_name=camel_name))
    _write_new(directory / manifest_path, _MANIFEST_APP_TEMPLATE.format(name=name))
    _write_new(
        directory / 'app.py', _APP_TEMPLATE.format(name=name, pyname=pyname, camel_name=camel_name, manifest_path=manifest_path)
    )
    return 0


def init(template: Literal['standalone', 'app'], name: Optional[str] = None, directory: Optional[str] = None) -> int:
    target = pathlib.Path(directory or os.getcwd())
    if name is None:
        name = target.resolve().name
    if template == 'standalone':
        return _init_standalone(name, target)
    elif template == 'app':
        return _init_app(name, target)
    else:
        print('invalid template', template, file=sys.stderr)
        return 1


def synth(
    manifests: list[str],
    environment: Optional[str] = None,
    region: Optional[str] = None,
    account: Optional[str] = None,
    output_format: Literal['json', 'yaml'] = 'json',
    output_dir: Optional[str] = None,
) -> int:
    app = create_app(manifests, environment=environment, region=region, account=account)
    documents = app.synth()
    write_documents(documents, output_format=output_format, output_dir=output_dir)
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser('synthkit')
    parser.add_argument('--log-level', default='WARNING', choices=('DEBUG', 'INFO', 'WARNING', 'ERROR'))
    subparsers = parser.add_subparsers(title='subcommands', description='valid subcommands', dest='command', required=True)

    init_parser = subparsers.add_parser('init', help='create a starter manifest')
    init_parser.add_argument('--template', type=str, choices=('standalone', 'app'), default='standalone')
    init_parser.add_argument('--name', type=str, default=None, help='project name. Default: name of the current directory')
    init_parser.add_argument('--directory', type=str, default=None)

    synth_parser = subparsers.add_parser('synth', help='synthesize templates from one or more manifests')
    synth_parser.add_argument('manifests', nargs='+')
    synth_parser.add_argument('--environment', default=None, help='only synthesize stacks for this environment')
    synth_parser.add_argument('--region', default=None, help='only synthesize stacks for this region')
    synth_parser.add_argument('--account', default=None, help='override the account of every stack')
    synth_parser.add_argument('--format', dest='output_format', choices=('json', 'yaml'), default='json')
    synth_parser.add_argument('-o', '--output-dir', default=None, help='write one template per stack to this directory')

    schema_parser = subparsers.add_parser('schema', help='print the JSON schema of the manifest format')
    schema_parser.add_argument('--indent', type=int, default=4)
    schema_parser.add_argument('-o', '--outfile', default=None)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format='%(levelname)s %(message)s')

    try:
        if args.command == 'init':
            raise SystemExit(init(template=args.template, name=args.name, directory=args.directory))
        elif args.command == 'synth':
            raise SystemExit(
                synth(
                    args.manifests,
                    environment=args.environment,
                    region=args.region,
                    account=args.account,
                    output_format=args.output_format,
                    output_dir=args.output_dir,
                )
            )
        elif args.command == 'schema':
            _manifest_schema(indent=args.indent, outfile=args.outfile)
            raise SystemExit(0)
    except (SynthKitError, pydantic.ValidationError, jinja2.TemplateError, RuntimeError, ValueError, OSError) as e:
        print(f'error: {e}', file=sys.stderr)
        raise SystemExit(1)
