"""Test suite for the umbrella review pipeline.

This package contains unit tests covering effect size derivation,
random-effects pooling, table loading and export, plus integration
tests for the command line interface. To run the tests, execute
`pytest` from the project root.
"""
