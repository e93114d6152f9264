"""Invoking principals and their tool sets."""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

SYSTEM_KIND = "system"
USER_KIND = "user"
PLUGIN_KIND = "plugin"


@dataclass(frozen=True)
class Agent:
    name: str
    kind: str = USER_KIND
    tools: FrozenSet[str] = frozenset()
    description: str = ""

    def allows(self, tool_name: str) -> bool:
        # System agents bypass the toolset check entirely.
        return self.kind == SYSTEM_KIND or tool_name in self.tools


SYSTEM = Agent(
    name="system",
    kind=SYSTEM_KIND,
    description="Direct CLI access with all tools.",
)

SUPERVISOR = Agent(
    name="supervisor",
    tools=frozenset({
        "calculate", "get_time", "get_weather", "task_list", "task_add",
        "task_done", "remember", "recall", "read_url",
    }),
    description="Triage agent; handles quick lookups, tasks and memory directly.",
)

CODER = Agent(
    name="coder",
    tools=frozenset({
        "read_file", "write_file", "list_files", "delete_file", "run_cmd", "read_url",
        "git_status", "git_diff", "git_log", "grep",
    }),
    description="Handles files, search, git and command execution.",
)

ORGANIZER = Agent(
    name="organizer",
    tools=frozenset({"task_add", "task_list", "task_done", "remember", "recall"}),
    description="Manages tasks and long-term memory.",
)

ASSISTANT = Agent(
    name="assistant",
    tools=frozenset({"get_time", "get_weather", "calculate", "read_url", "recall"}),
    description="General questions and web lookups.",
)

BUILTIN_AGENTS: Dict[str, Agent] = {
    a.name: a for a in (SYSTEM, SUPERVISOR, CODER, ORGANIZER, ASSISTANT)
}


def get_agent(name: str) -> Optional[Agent]:
    return BUILTIN_AGENTS.get((name or "").strip().lower())
