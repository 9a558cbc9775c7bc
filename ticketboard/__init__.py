# Ticket board: board state, filtering, persistence, and backups
#
# Components:
#   schema.py   - Data model (Ticket, Column, Board, FilterCriteria, TicketStatus, Priority)
#   filters.py  - Pure predicate engine and query helpers over tickets
#   board.py    - BoardStore: the single mutation authority with change notification
#   demo.py     - Demo board generator used on first start and refresh
#   storage.py  - SQLite key-value store and board/filters persistence adapter
#   backup.py   - Backup document export/import and CSV ticket export
#   config.py   - YAML configuration and logging setup
