"""
Permission matrix feature module.

Reconciles per-agent module/sub-module permission sets against the platform
navigation tree and enforces that scoped actors only grant what they hold.
"""
