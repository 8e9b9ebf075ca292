"""Integration tests: full sync runs against temporary projects."""
