"""
wabot/plugins/__init__.py
Feature plugins; each module exposes setup(bot) returning a Plugin
"""

from .base import Helpers, Plugin, PluginContext, TaskContext, TaskSpec

__all__ = ["Helpers", "Plugin", "PluginContext", "TaskContext", "TaskSpec"]
