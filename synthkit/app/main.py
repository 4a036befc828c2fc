from __future__ import annotations

import logging
import os
import pathlib
import sys
from typing import Any
from typing import Iterator
from typing import Literal
from typing import Optional

from synthkit.model import EnvironmentDefinition
from synthkit.model import Manifest
from synthkit.model import ManifestLoader
from synthkit.model import ManifestStack
from synthkit.synth import App
from synthkit.synth import StructuredDocument

OutputFormat = Literal['json', 'yaml']


def _stack_targets(manifest: Manifest, region_fallback: Optional[str]) -> Iterator[tuple[str, Optional[str], str, dict[str, Any]]]:
    """Yields (environment name, account, region, provider config) for every stack a manifest describes"""
    regions = manifest.regions
    if regions is None and region_fallback is not None:
        regions = [region_fallback]
    for env in manifest.environments:
        if isinstance(env, str):
            env = EnvironmentDefinition(name=env)
        env_regions = env.regions or regions
        if env_regions is None:
            raise ValueError(
                f'No region for environment {env.name!r}. You must define ``regions:`` or set the AWS_DEFAULT_REGION environment variable'
            )
        for region in env_regions:
            yield env.name, env.account or manifest.account, region, env.provider_config or {}


def create_app(
    manifest_files: list[str],
    environment: Optional[str] = None,
    region: Optional[str] = None,
    account: Optional[str] = None,
    app: Optional[App] = None,
) -> App:
    """
    Create a stack for each environment/region combination of each manifest.

    ``environment``, ``region`` and ``account`` narrow the selection, or override the account.
    """
    if app is None:
        app = App()
    region_fallback = os.getenv('AWS_DEFAULT_REGION')
    for manifest_file in manifest_files:
        loader = ManifestLoader()
        initial_manifest = loader.load(manifest_file, environment_name='', account='', region='')
        if initial_manifest.environments is None:
            raise ValueError(f'{manifest_file}: standalone manifests require an `environments:` key.')
        for env_name, env_account, env_region, env_provider_config in _stack_targets(initial_manifest, region_fallback):
            if environment is not None and env_name != environment:
                continue
            if region is not None and env_region != region:
                continue
            stack_account = account or env_account or ''
            manifest = loader.load(manifest_file, environment_name=env_name, account=stack_account, region=env_region)
            provider_kwargs: dict[str, Any] = {}
            provider_kwargs.update(manifest.provider_config)
            provider_kwargs.update(env_provider_config)
            provider_kwargs.update(environment_name=env_name, account=stack_account, region=env_region)
            logging.info(f'creating stack for {manifest.name} environment={env_name} region={env_region}')
            ManifestStack.with_dynamic_provider(app, manifest_file, loader=loader, provider_kwargs=provider_kwargs)
    if not app.stacks:
        logging.warning('no stacks matched the given environment/region selection')
    return app


def render_document(document: StructuredDocument, output_format: OutputFormat = 'json') -> str:
    if output_format == 'yaml':
        return document.to_yaml()
    return document.to_json(indent=2) + '\n'


def write_documents(
    documents: dict[str, StructuredDocument], output_format: OutputFormat = 'json', output_dir: Optional[str] = None
) -> list[pathlib.Path]:
    """Write one template per stack into ``output_dir``, or all of them to stdout when no directory is given"""
    written: list[pathlib.Path] = []
    if output_dir is None:
        for stack_name, document in documents.items():
            if len(documents) > 1:
                sys.stdout.write(f'# {stack_name}\n')
            sys.stdout.write(render_document(document, output_format))
        return written
    out = pathlib.Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    for stack_name, document in documents.items():
        path = out / f'{stack_name}.template.{output_format}'
        path.write_text(render_document(document, output_format))
        logging.info(f'wrote {path}')
        written.append(path)
    return written
