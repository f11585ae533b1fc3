"""CLI module for deepshell."""
