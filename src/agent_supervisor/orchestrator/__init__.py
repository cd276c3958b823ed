"""Supervision of an interactive agent CLI running under a pseudo-terminal.

The agent (opencode by default) is a long-running process that streams
newline-delimited JSON records on its terminal and may exit cleanly without
having finished the work. This package owns that boundary:

- Spawning the agent inside the user's shell so PATH and profile match a
  real terminal session.
- Turning the raw terminal stream into typed protocol messages, and those
  into typed supervisor events on an `EventBus`.
- Deciding whether a clean exit actually means "done", resuming the same
  session with a nudge prompt a bounded number of times when it does not.
- Watching the agent's own log files for provider and auth failures that
  never reach the primary stream.
"""
