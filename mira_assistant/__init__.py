"""
Mira Assistant - voice-activated conversational assistant for smart glasses.
"""

import logging

# Suppress chatty HTTP client logs
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)

__version__ = "0.1.0"

__all__ = ["__version__"]
