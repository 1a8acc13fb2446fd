"""Core domain models for study records and pooled results."""
