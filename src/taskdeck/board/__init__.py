"""
Board data layer.

Components:
- models.py: entities (Column, Record, Member, Board) and typed property reads
- schema.py: column definitions, options and the default board layout
- records.py: record collection operations + checklist/attachment helpers
- filters.py: rule and free-text filtering
- views.py: table / kanban / calendar / statistics projections
- reorder.py: dense reordering and the column drag state machine
- mutations.py: optimistic mutation engine for one board (BoardSession)
- catalog.py: board list, creation with default columns, owner membership
"""
