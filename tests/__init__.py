"""Test suite for the mailroom service."""
