"""Git plumbing: repository adapter, remote authentication, commit messages."""
