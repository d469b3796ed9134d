"""Flask blueprint package for venueledger routes.

Blueprints are defined in the sibling modules (``auth_routes``,
``closeout_routes`` and ``table_routes``) and registered in
:mod:`venueledger.__init__`.
"""
