"""
deepshell - An agentic shell assistant driven by a language model
"""

__version__ = "0.1.0"
__logo__ = "🐚"
