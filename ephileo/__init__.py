"""Ephileo - a local AI agent for OpenAI-compatible endpoints."""

__version__ = "0.1.0"

from ephileo.agent import Agent, AgentResult
from ephileo.config import Config
from ephileo.main import cli

__all__ = ["Agent", "AgentResult", "Config", "cli", "__version__"]
