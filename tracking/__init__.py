"""Session records, violation classification and the trust score ledger."""
