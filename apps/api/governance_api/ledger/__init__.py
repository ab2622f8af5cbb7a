"""Hash-chained governance ledger: canonical encoding, hashing, store and verifier."""
