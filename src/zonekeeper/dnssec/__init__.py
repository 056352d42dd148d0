"""DNSSEC key management and zone signing."""
