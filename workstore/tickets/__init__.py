"""
Tickets — units of work with dependencies, the dependency graph and the
execution planner.
"""
