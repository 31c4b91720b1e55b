"""
Entry point for running mira-assistant as a module.

Usage: python -m mira_assistant
"""

from mira_assistant.cli import main

if __name__ == "__main__":
    main()
