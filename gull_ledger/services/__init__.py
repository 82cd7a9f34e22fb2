"""
Business logic services.

Import from the submodules directly (e.g.
gull_ledger.services.transaction_service); the stores depend on the
number normalizer, so this package does not import its modules
eagerly.
"""
