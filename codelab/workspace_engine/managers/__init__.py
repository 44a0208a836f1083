"""Managers for the workspace engine.

Each manager is instantiated once during app lifespan and stored on
``app.state``.  Methods that touch PostgreSQL accept an ``AsyncSession``
parameter and raise domain exceptions from ``errors`` (``NotFoundError``,
``ValidationError``, ...), never HTTP exceptions -- that translation is the
router's responsibility.
"""
