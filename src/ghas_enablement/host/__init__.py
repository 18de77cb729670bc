"""Hosting-provider access: the abstract RepoHost and its GitHub REST implementation."""
