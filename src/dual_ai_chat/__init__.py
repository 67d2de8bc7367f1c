"""
Dual AI Chat - two-persona debate orchestrator with a shared notepad.
"""

__version__ = "0.3.0"
