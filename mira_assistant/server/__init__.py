"""
Server module for mira-assistant.
"""

from mira_assistant.server.app import create_app, run_server

__all__ = ["create_app", "run_server"]
