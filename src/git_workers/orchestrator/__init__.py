"""Worker ledger, lifecycle and the spawn/complete/resolve use cases.

The engine does not run agents itself.  It hands out a worktree + branch per
task, records what each external agent reports, and owns every operation that
touches the shared main worktree (dry-run probes, merges, resolutions) so those
can be serialized per repository.
"""
