"""Test suite for hybrid-storage backends.

This package contains tests for the key-value stores, the change notifier and
the local, remote and hybrid backends, including cross-store compliance tests.
"""
