"""Command planning, execution and self-repair.

A symbolic command travels planner -> executor -> backend -> validator. On a
failed attempt the executor classifies the error, asks the repair engine for an
alternate plan, restores the pre-attempt snapshot and tries again, bounded by a
fixed attempt ceiling. Planning-time refusals (authorization, quota, approval,
unknown command) never enter that loop.
"""
