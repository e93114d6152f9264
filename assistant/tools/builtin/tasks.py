"""Task tools: a small todo list stored as JSONL."""
import logging
from datetime import datetime, timezone

from ..contract import ErrorCode, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

TASKS_FILE = "tasks.jsonl"
PRIORITIES = ("low", "medium", "high")
STATUSES = ("open", "done", "all")


@register_tool(
    "task_add",
    description="Add a task to the todo list",
    params=[
        ToolParam("text", description="task description"),
        ToolParam("due", description="due date YYYY-MM-DD", required=False),
        ToolParam("priority", description="task priority", required=False, enum=PRIORITIES),
    ],
)
async def task_add(ctx, text: str, due: str = None, priority: str = "medium") -> ToolResult:
    text = text.strip()
    if not text:
        return failure(ErrorCode.VALIDATION_ERROR, "Task text is empty", {"field": "text"})
    if due:
        try:
            datetime.strptime(due, "%Y-%m-%d")
        except ValueError:
            return failure(ErrorCode.VALIDATION_ERROR, f"Invalid due date '{due}', expected YYYY-MM-DD",
                           {"field": "due"})

    def add(records):
        next_id = max((r.get("id", 0) for r in records if isinstance(r.get("id"), int)), default=0) + 1
        task = {
            "id": next_id,
            "text": text,
            "status": "open",
            "priority": priority,
            "due": due,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        records.append(task)
        return task

    task = await ctx.store.update(ctx.data_path(TASKS_FILE), add)
    logger.info(f"Task added: #{task['id']} {text[:60]}")
    return success(task)


@register_tool(
    "task_list",
    description="List tasks on the todo list",
    params=[
        ToolParam("status", description="which tasks to show, default all", required=False, enum=STATUSES),
    ],
)
async def task_list(ctx, status: str = "all") -> ToolResult:
    records = await ctx.store.read(ctx.data_path(TASKS_FILE))
    if status != "all":
        records = [r for r in records if r.get("status") == status]
    return success({"status": status, "tasks": records})


@register_tool(
    "task_done",
    description="Mark a task as done",
    params=[
        ToolParam("id", type="integer", description="task id"),
    ],
)
async def task_done(ctx, id: int) -> ToolResult:
    def complete(records):
        for r in records:
            if r.get("id") == id:
                if r.get("status") != "done":
                    r["status"] = "done"
                    r["done_at"] = datetime.now(timezone.utc).isoformat()
                return dict(r)
        return None

    task = await ctx.store.update(ctx.data_path(TASKS_FILE), complete)
    if task is None:
        return failure(ErrorCode.EXEC_ERROR, f"Task #{id} not found", {"id": id})
    logger.info(f"Task done: #{id}")
    return success(task)
