"""Code generation through a model service.

This package provides:
- Prompt templates for specification, documentation and repository inputs
- Tolerant JSON recovery from free-form model replies
- The ModelClient protocol and a Claude Agent SDK implementation
- Project bundling for the deployment host
"""

from .code_generator import CodeGenerator
from .model_client import ClaudeAgentModelClient, ModelClient, ModelUsageStats
from .parsing import parse_generation_result, parse_model_json, parse_repository_analysis
from .project import build_deploy_bundle, parse_project, serialize_project

__all__ = [
    "CodeGenerator",
    "ClaudeAgentModelClient",
    "ModelClient",
    "ModelUsageStats",
    "parse_generation_result",
    "parse_model_json",
    "parse_repository_analysis",
    "build_deploy_bundle",
    "parse_project",
    "serialize_project",
]
