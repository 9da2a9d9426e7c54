"""scriptflow: reusable content pipelines with signed webhook triggers."""

from .api import create_app
from .errors import ScriptflowError
from .execute import PipelineEngine
from .models import Artifact, PipelineDefinition, RunInput, Step
from .persistence import get_resolver
from .webhook import WebhookAuthenticator

__version__ = "0.1.0"
__all__ = [
    "Artifact",
    "PipelineDefinition",
    "PipelineEngine",
    "RunInput",
    "ScriptflowError",
    "Step",
    "WebhookAuthenticator",
    "create_app",
    "get_resolver",
]
