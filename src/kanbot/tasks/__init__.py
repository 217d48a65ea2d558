"""
Task subsystem.

Components:
- task_models.py: data structures (Task, Stage, ChecklistItem, TaskDraft, TaskPatch)
- task_store.py: SQLite-backed storage for stages, tasks, checklists and bot activity
"""
