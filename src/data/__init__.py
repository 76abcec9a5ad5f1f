"""
Tabular views of normalized market data, orders and positions.

Converts canonical records into pandas DataFrames for dashboards, notebooks
and scripts, with the project's newest-first ordering convention.
"""
