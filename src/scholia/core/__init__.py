"""Core value types and collaborator protocols."""
