"""
Schema-tolerant SQL helpers.

Modules:
  sql_clauses     : Pure functions for identifier quoting and IN lists.
  column_resolver : Runtime column discovery + candidate column picking.
"""
