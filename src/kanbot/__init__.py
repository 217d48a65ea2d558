"""
kanbot: a chat bot for a small kanban board.

Turns chat messages into tasks (LLM with a rule-based fallback) and sends
due-date reminders back to the chat room.
"""

__version__ = "0.1.0"
