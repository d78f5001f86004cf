"""
Inventory Runs - COGS application runs.

The allocation writer walks shipped order lines for a date range and
persists costed allocation rows, one SAVEPOINT per line, recording every
run and line outcome in the run log.
"""
