"""Git plumbing: worktrees, dry-run merges, real merges and conflict resolution."""
