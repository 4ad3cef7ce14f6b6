"""Card reward quota ledger service."""
