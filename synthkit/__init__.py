import importlib.metadata

from .construct import Construct
from .core import CfnOutput
from .core import CfnResource
from .core import Fn
from .core import Stack
from .model import EnvironmentProvider
from .model import ManifestLoader
from .model import ManifestStack
from .synth import App
from .synth import synthesize
from .tokens import CapturedList
from .tokens import Token

__VERSION__ = importlib.metadata.version('synthkit')

__all__ = [
    'App',
    'CapturedList',
    'CfnOutput',
    'CfnResource',
    'Construct',
    'EnvironmentProvider',
    'Fn',
    'ManifestLoader',
    'ManifestStack',
    'Stack',
    'Token',
    'synthesize',
]
