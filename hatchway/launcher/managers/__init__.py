"""Orchestration managers for the launcher.

Managers hold their collaborators (store, drivers, authorizer) as
constructor arguments and raise domain exceptions (``LookupError``,
``ValueError``, ``PermissionError`` subclasses), never HTTP exceptions --
that translation is the router's responsibility.
"""
