"""
Reminder pipeline.

Components:
- scanner.py: finds tasks whose reminder threshold has been crossed
- dispatcher.py: renders and posts one notice per task, then latches it
- scheduler.py: polling loop driving scan + dispatch
"""
