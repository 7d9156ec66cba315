"""System prompts and prompt assembly for executor invocations."""

from agentrelay.models import TaskRequest

PLAN_TOOLS = "Read,Grep,Glob,WebFetch,WebSearch,Task"


def build_executor_system_prompt(service_name: str) -> str:
    """System prompt for the full-access execute phase."""
    return f"""You are an executor agent. Be direct, precise and efficient.

## Instructions

- Complete the assigned task fully.
- If an Approved Plan is included in the context, follow it step by step. The user has reviewed it.
- When finished, report what was done and the outcome: files changed, commands run, key results.
- If something fails, report the failure with its error details.
- If the task is ambiguous, make a reasonable decision and state the assumption.
- Keep the final report concise; it is relayed to the user verbatim.

## Service restarts

Never restart, stop or start the {service_name} service yourself
(no `systemctl restart {service_name}`, no `service {service_name} restart`).
If your work requires a restart, say so in your report with this exact line:

> **NOTE: Service restart needed.**
"""


def build_planner_system_prompt() -> str:
    """System prompt for the read-only plan phase."""
    return """You are a planning agent. Investigate the task and produce a clear, actionable plan. Do NOT execute it.

## Mode: PLANNING ONLY

You may only read files, search code, find files and fetch web content.
You must not edit, write or create files, run shell commands, or change anything.

## Output

Produce a plan summary with these sections:

### What needs to change
A concise description of what the task requires.

### Files involved
Every file that will be created, modified or deleted, with full paths.

### Approach
Numbered steps describing how the work will be done. Name functions, data structures and integration points.

### Risks / Notes
Risks, edge cases and assumptions the user should know before approving.

## Rules

1. Investigate enough to be accurate, then stop.
2. Do not produce code; describe what the code will do.
3. If feedback on a previous plan is provided, address it directly.
4. Keep the plan under 2000 characters.
"""


def build_planner_revision_prompt(feedback: str, previous_plan: str) -> str:
    """Planner prompt extended with the previous plan and the user's feedback."""
    return f"""{build_planner_system_prompt()}
## Previous Plan (changes requested)

### Previous Plan
{previous_plan}

### User Feedback
{feedback}

Produce a REVISED plan that addresses the feedback, in the same format.
"""


def build_task_prompt(request: TaskRequest) -> str:
    """User prompt sent to the agent for both phases."""
    parts = []
    if request.memory_context:
        parts.append(f"[MEMORY CONTEXT]\n{request.memory_context}\n")
    parts.append(f"## Task\n{request.task}")
    if request.context:
        parts.append(f"\n## Context\n{request.context}")
    parts.append(f"\n## Original User Message\n{request.raw_message}")
    parts.append(f"\n## Working Directory\n{request.cwd}")
    return "\n".join(parts)


def with_approved_plan(context: str, plan_text: str) -> str:
    """Context for the execute phase once a plan has been approved."""
    return f"{context}\n\n## Approved Plan\n{plan_text}"
