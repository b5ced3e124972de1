"""Routing: route templates, constraints, the route table and groups.

Routes are registered during setup, checked for ambiguity as they arrive,
and sealed into a read-only table when the app freezes.
"""
