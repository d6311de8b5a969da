"""Public API surface for HTTP serving and Python-first interfaces."""

from story_tree.api.app import create_app
from story_tree.api.contracts import StoryCreateRequest
from story_tree.api.python_interface import StoryTreeApiClient

__all__ = [
    "StoryCreateRequest",
    "StoryTreeApiClient",
    "create_app",
]
