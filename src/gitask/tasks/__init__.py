"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, Priority)
- task_codec.py: TOML encoding of one task file
- task_store.py: one-file-per-task store, stages but never commits
- state_machine.py: lifecycle transitions and the single-active rule
- task_query.py: filters, fuzzy matching, sorting, statistics
- task_api.py: TaskManager, the API front-ends talk to
"""
