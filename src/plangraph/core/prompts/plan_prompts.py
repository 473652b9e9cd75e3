"""
Planner Prompts

This module provides the prompt templates used by the Planner:
- PLAN_SYSTEM_PROMPT: Instructions and output format for plan generation
- PLAN_USER_PROMPT: The user's task wrapped with the current date
- REPLAN_INSTRUCTION: Instruction used when an agent reports that the
  user's intent changed mid-run

Usage:
    from plangraph.core.prompts.plan_prompts import build_plan_system_prompt

    system_prompt = build_plan_system_prompt(runners)
"""

from datetime import datetime

PLAN_SYSTEM_PROMPT = """
# Task Planner

You are a planner that breaks a user's task down into a small graph of
agents. Each agent is executed by one of the available agent types listed
below. Agents run in dependency order: an agent starts only after every
agent listed in its `depends` attribute has finished. Agents without
dependencies between each other may run in parallel.

## Available Agents

{agents}

## Rules

1. Only use agent names from the list above.
2. Give every agent a unique numeric `id`, starting at 1.
3. `depends` is a comma separated list of ids of agents that must finish
   first. Leave it empty for agents that can start immediately.
4. Never create circular dependencies.
5. Write each `task` as a self-contained instruction. Mention what the
   agent receives from the agents it depends on.
6. Use `input` only for a concrete input reference (a URL, a path, an id).
7. Keep the plan as small as the task allows.

## Output Format

Answer with exactly one XML document and nothing after it:

<root>
  <name>Short plan name</name>
  <thought>Your reasoning about how to split the task</thought>
  <agents>
    <agent name="agent_name" id="1" depends="">
      <task>What the agent must do</task>
      <input>Optional input reference</input>
    </agent>
    <agent name="agent_name" id="2" depends="1">
      <task>What the agent must do with the result of agent 1</task>
    </agent>
  </agents>
</root>
"""

PLAN_USER_PROMPT = """
Current datetime: {datetime}

Task:
{task_prompt}
"""

PLAN_EXTENSION_PROMPT = """
Additional planning instructions:
{ext_prompt}
"""

REPLAN_INSTRUCTION = """
While executing the plan, agent "{agent_name}" (id {agent_id}) reported that
the user's intent changed:
{reason}

Agents that already finished: {finished}.
Revise the plan for the remaining work. Keep the ids of agents that already
finished and do not plan them again. Answer with the complete revised XML
document.
"""


def format_agent_catalog(runners) -> str:
    """Render the name and capability text of every registered runner."""
    lines = []
    for runner in runners:
        description = getattr(runner, "plan_description", None) or runner.description
        lines.append(f"- **{runner.name}**: {description.strip()}")
    return "\n".join(lines) if lines else "(no agents registered)"


def build_plan_system_prompt(runners) -> str:
    return PLAN_SYSTEM_PROMPT.format(agents=format_agent_catalog(runners)).strip()


def build_plan_user_prompt(task_prompt: str, ext_prompt: str | None = None) -> str:
    prompt = PLAN_USER_PROMPT.format(
        datetime=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        task_prompt=task_prompt.strip(),
    )
    if ext_prompt:
        prompt += PLAN_EXTENSION_PROMPT.format(ext_prompt=ext_prompt.strip())
    return prompt.strip()
