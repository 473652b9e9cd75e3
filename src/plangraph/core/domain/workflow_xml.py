"""
Workflow Graph Description

The planner describes a workflow as an XML document:

    <root>
      <name>Fetch and summarize</name>
      <thought>...</thought>
      <agents>
        <agent name="fetch" id="1" depends="">
          <task>Fetch page X</task>
          <input>https://example.com</input>
        </agent>
        <agent name="summarize" id="2" depends="1">
          <task>Summarize the page</task>
        </agent>
      </agents>
    </root>

``depends`` is a comma separated list of agent ids; ``dependsOn`` is
accepted as an alias when parsing. Parsing comes in two flavours:
- partial (``done=False``): used for live previews while the plan is still
  streaming. Truncated markup is repaired first and failures never raise.
- strict (``done=True``): used for the final plan. Malformed output raises
  WorkflowParseError and the dependency graph is validated.
"""

import re
import xml.etree.ElementTree as ET

from plangraph.core.domain.errors import OrchestrationError, WorkflowParseError
from plangraph.core.domain.models import DeclaredAgent, Workflow
from plangraph.core.domain.tree import build_execution_tree

_ROOT_START = re.compile(r"<root[\s>]")
_BARE_AMPERSAND = re.compile(r"&(?![a-zA-Z0-9#]+;)")
_TAG = re.compile(r"<(/?)([A-Za-z_][\w.-]*)[^<>]*?(/?)>")
_IDENTIFIER = re.compile(r"^[A-Za-z_][\w-]*$")


def fix_xml_tag(text: str) -> str:
    """
    Repair truncated XML so that it can be parsed.

    Handles a dangling ``<``, bare ampersands, an attribute name cut before
    its value, unterminated attribute values, an unterminated tag and
    elements that were opened but never closed.

    Args:
        text: Possibly truncated XML

    Returns:
        Well-formed (best effort) XML
    """
    text = text.strip()
    if text.endswith("<"):
        text = text[:-1]
    text = _BARE_AMPERSAND.sub("&amp;", text)

    open_idx = text.rfind("<")
    inside_tag = open_idx > text.rfind(">")
    if inside_tag:
        if text[open_idx:].startswith("</"):
            # a half-written closing tag is rebuilt below
            text = text[:open_idx]
        elif text.endswith("="):
            text += '""'
        else:
            last_space = text.rfind(" ")
            tail = text[last_space + 1 :]
            if last_space > open_idx and _IDENTIFIER.match(tail):
                text += '=""'

    text = _close_dangling_tag(text)

    stack: list[str] = []
    for match in _TAG.finditer(text):
        closing, tag_name, self_closing = match.groups()
        if self_closing:
            continue
        if closing:
            if tag_name in stack:
                while stack and stack.pop() != tag_name:
                    pass
        else:
            stack.append(tag_name)

    return text + "".join(f"</{tag_name}>" for tag_name in reversed(stack))


def _close_dangling_tag(text: str) -> str:
    in_tag = False
    in_quote = False
    for ch in text:
        if in_tag:
            if ch == '"':
                in_quote = not in_quote
            elif ch == ">" and not in_quote:
                in_tag = False
        elif ch == "<":
            in_tag = True
    if in_quote:
        text += '"'
    if in_tag:
        text += ">"
    return text


def _element_text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def parse_workflow(
    task_id: str,
    text: str,
    done: bool,
    thinking: str | None = None,
) -> Workflow | None:
    """
    Parse planner output into a workflow.

    Args:
        task_id: Owning task id
        text: Planner output (may contain prose around the <root> element)
        done: True for the final output (strict), False for a streaming preview
        thinking: Model reasoning text, prepended to the plan's thought

    Returns:
        The parsed workflow. Partial parsing returns a thought-only preview
        (or None without reasoning text) when nothing parseable exists yet.

    Raises:
        WorkflowParseError: Strict parsing of malformed output
        CircularDependencyError: Strict parsing of a cyclic plan
        EmptyWorkflowError: Strict parsing of a plan without agents
    """
    preview = None
    if thinking:
        preview = Workflow(task_id=task_id, thought=thinking, xml=text)
    try:
        workflow = _parse(task_id, text, done, thinking)
    except (ET.ParseError, ValueError, OrchestrationError):
        if done:
            raise
        return preview
    return workflow if workflow is not None else preview


def _parse(
    task_id: str, text: str, done: bool, thinking: str | None
) -> Workflow | None:
    start = _ROOT_START.search(text)
    if start is None:
        if done:
            raise WorkflowParseError("Plan output does not contain a <root> element")
        return None
    xml = text[start.start() :]
    end = xml.find("</root>")
    if end > -1:
        xml = xml[: end + len("</root>")]
    if done:
        xml = _BARE_AMPERSAND.sub("&amp;", xml)
    else:
        xml = fix_xml_tag(xml)

    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        if done:
            raise WorkflowParseError(f"Malformed plan output: {e}") from e
        raise

    thought = _element_text(root.find("thought"))
    workflow = Workflow(
        task_id=task_id,
        name=_element_text(root.find("name")),
        thought=f"{thinking}\n{thought}" if thinking else thought,
        xml=xml,
    )

    agents_element = root.find("agents")
    agent_elements = agents_element.findall("agent") if agents_element is not None else []
    seen_ids: set[str] = set()
    for index, element in enumerate(agent_elements):
        name = (element.get("name") or "").strip()
        if not name:
            if done:
                raise WorkflowParseError(f"Agent at position {index} has no name")
            break
        agent_id = (element.get("id") or str(index)).strip()
        if agent_id in seen_ids:
            if done:
                raise WorkflowParseError(f"Duplicate agent id: {agent_id}")
            continue
        seen_ids.add(agent_id)
        depends = element.get("depends") or element.get("dependsOn") or ""
        workflow.agents.append(
            DeclaredAgent(
                id=agent_id,
                name=name,
                task=_element_text(element.find("task")),
                input=_element_text(element.find("input")) or None,
                depends=[d.strip() for d in depends.split(",") if d.strip()],
            )
        )

    if done:
        build_execution_tree(workflow.agents)
    return workflow


def workflow_to_xml(workflow: Workflow) -> str:
    """Serialize a workflow into its graph description."""
    root = ET.Element("root")
    ET.SubElement(root, "name").text = workflow.name
    ET.SubElement(root, "thought").text = workflow.thought
    agents_element = ET.SubElement(root, "agents")
    for agent in workflow.agents:
        element = ET.SubElement(
            agents_element,
            "agent",
            {"name": agent.name, "id": agent.id, "depends": ",".join(agent.depends)},
        )
        ET.SubElement(element, "task").text = agent.task
        if agent.input:
            ET.SubElement(element, "input").text = agent.input
    ET.indent(root)
    return ET.tostring(root, encoding="unicode")


def reset_workflow_xml(workflow: Workflow) -> Workflow:
    """Regenerate ``workflow.xml`` after the agent collection changed."""
    workflow.xml = workflow_to_xml(workflow)
    return workflow
