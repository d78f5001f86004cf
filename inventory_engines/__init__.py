"""
Inventory Engines - pure calculation layer, zero I/O.

Bundle explosion, FIFO and moving-average costing, and coverage math.
Stateful orchestration lives in inventory_services and inventory_runs.
"""
