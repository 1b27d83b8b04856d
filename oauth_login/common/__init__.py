"""Shared HTTP plumbing: unified responses, exceptions and logging."""
