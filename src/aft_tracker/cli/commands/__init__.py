"""Command modules for the aft-tracker CLI."""
