"""Prompt for plan drafting."""

from agentflow.core.models import Memory, PlanningContext

STEP_FORMAT = """Return a JSON object with a "steps" array. Each step has:
- description: Clear description of the step
- tool: Tool to use (if applicable)
- action: Specific action to perform
- params: Parameters for the action
- dependencies: Array of step indices that must complete first (0-indexed, earlier steps only)

Use "{{step_N_result}}" inside params to pass the result of step N to a later step.

Example:
{
  "steps": [
    {
      "description": "Fetch unread emails",
      "tool": "gmail",
      "action": "list",
      "params": {"query": "is:unread"},
      "dependencies": []
    },
    {
      "description": "Analyze email content",
      "tool": "llm",
      "action": "analyze",
      "params": {"input": "{{step_0_result}}"},
      "dependencies": [0]
    }
  ]
}"""


def build_planning_prompt(
    context: PlanningContext, memories: list[Memory], knowledge: list[str]
) -> str:
    """Build the system prompt for drafting a plan.

    Args:
        context: Planning context (tools, constraints, step limit)
        memories: Relevant agent memories
        knowledge: Knowledge-base excerpts

    Returns:
        System prompt text
    """
    parts = [
        "You are an AI planning assistant. Create a detailed, step-by-step plan "
        "to accomplish the given task.",
        f"Available tools: {', '.join(context.available_tools) or 'none'}",
    ]

    if context.constraints:
        parts.append(f"Constraints: {', '.join(context.constraints)}")
    if context.max_steps:
        parts.append(f"Use at most {context.max_steps} steps.")
    if memories:
        parts.append("Relevant memories:\n" + "\n".join(m.content for m in memories))
    if knowledge:
        parts.append("Relevant knowledge:\n" + "\n".join(knowledge))

    parts.append(STEP_FORMAT)
    return "\n\n".join(parts)
