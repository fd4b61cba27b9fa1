"""CLI module for brprelay."""
