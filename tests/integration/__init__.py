"""
envexec: integration test package

Purpose
- Tests in this package spawn real processes through the local backends.

Functional requirements
- Must not trigger network access.
"""
