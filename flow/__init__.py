# FLOW server: board persistence, activity feed, and memory extraction
#
# Components:
#   config.py     - YAML-backed runtime configuration
#   store.py      - JSON document store (one file per logical store)
#   schema.py     - Event taxonomy and record types
#   events.py     - In-process event bus with persisted event log
#   activity.py   - Activity feed writer (event bus subscriber)
#   board.py      - Board snapshot persistence
#   diff.py       - Board snapshot diffing -> synthesized kanban events
#   sessions.py   - Session transcript ingestion into the unified message log
#   memory.py     - Memory extraction (file edits + daily logs) and refresh timer
#   workspace.py  - Workspace markdown file access
#   openclaw.py   - Adapters over the external orchestration CLI

__version__ = "0.4.0"
