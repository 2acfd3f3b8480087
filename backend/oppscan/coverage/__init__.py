"""Per-payer coverage resolution."""
