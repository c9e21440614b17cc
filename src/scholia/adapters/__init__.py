"""Tokenizer and workspace implementations."""
