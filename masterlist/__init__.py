# masterlist: local task list with ranked ordering and live views
#
# Components:
#   schema.py  - Data model (Record, Category) and error kinds
#   ranks.py   - Rank assignment for create / reorder / move
#   backend.py - SQLite persistence boundary (load_all, apply_transaction)
#   store.py   - TaskStore: transactional mutations + change notification
#   views.py   - Live active / completed / all projections
#   config.py  - YAML + environment configuration, logging setup
#   server.py  - Local Flask JSON API
