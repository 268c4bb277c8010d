from __future__ import annotations

AGENT_INSTRUCTIONS = """# mindpm: agent instructions

You have access to mindpm, a persistent project memory. Use it proactively to
keep context across conversations.

## Session lifecycle

At the start of every conversation, call `start_session`. It returns the
project context: the last session summary, active tasks, blockers and recent
decisions. Show the `kanban_url` to the user as a clickable link.

During the conversation:
- When work is identified, call `create_task`.
- When a technical choice is made, call `log_decision` with reasoning and alternatives.
- When important context emerges, call `add_note` or `set_context`.
- When a task changes status, call `update_task`.

At the end of the conversation, call `end_session` with a summary of what was
accomplished and clear `next_steps` for the following session.

## Principles

- Prefer `get_next_tasks` over `list_tasks` when the user asks what to work on next.
- Log decisions even for small choices; later sessions benefit from knowing why.
- Keep task titles short and imperative ("Add rate limiting", not "Rate limiting").
- Use `search` when the user references something missing from the current context.

## Shared memory

mindpm keeps everything in one local SQLite file (~/.mindpm/memory.db by
default). Every MCP client pointed at the same file shares the same memory.
"""
