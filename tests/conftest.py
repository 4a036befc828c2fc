"""Shared fixtures for synthkit tests."""

from __future__ import annotations

import pathlib
import textwrap
from typing import Callable

import pytest

from synthkit.cloudwatch import Metric
from synthkit.core import Stack
from synthkit.synth import App


@pytest.fixture
def app() -> App:
    return App()


@pytest.fixture
def stack(app: App) -> Stack:
    return Stack(app, 'TestStack')


@pytest.fixture
def metric() -> Metric:
    return Metric(namespace='AWS/SQS', metric_name='ApproximateNumberOfMessagesVisible', dimensions={'QueueName': 'jobs'})


@pytest.fixture
def write_manifest(tmp_path: pathlib.Path) -> Callable[[str], str]:
    """Write a manifest body (dedented) to a file and return its path."""

    def _write(body: str, name: str = 'manifest.yaml') -> str:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return str(path)

    return _write
