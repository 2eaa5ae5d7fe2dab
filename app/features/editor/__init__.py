"""
Permission editor feature module.

Hosts in-memory editing sessions over one agent's permission matrix and
persists edits to the platform through a debounced save.
"""
