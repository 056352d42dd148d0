"""Periodic re-signing of hosted zones."""
