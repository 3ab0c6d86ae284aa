"""
Domain Layer - Registration Payment Records

This layer contains:
- Status enumerations and the registration/transaction state mapping
- Immutable Registration and PaymentTransaction records
- Tagged orchestrator results
- Ledger exceptions

No storage or logging dependencies.
"""
