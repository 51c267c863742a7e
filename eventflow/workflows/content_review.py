"""
Content Review Workflow Implementation.

The sample workflow demonstrating the engine:
1. Draft a piece of content for a topic
2. Ask a human reviewer to approve it (the run suspends here)
3. On rejection, redraft with the reviewer's notes and ask again
4. Stop when approved, or auto-approve after ``max_revisions`` drafts
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from eventflow.engine.events import Event, StartEvent, StopEvent
from eventflow.engine.graph import Graph
from eventflow.engine.node import node


logger = logging.getLogger(__name__)

WORKFLOW_NAME = "content-review"


# ============================================================
# Events
# ============================================================

class DraftReady(Event):
    """A draft waiting for review."""
    draft: str
    revision: int


class RevisionRequested(Event):
    """The reviewer rejected a draft."""
    notes: str = ""
    revision: int


class DraftProgress(Event):
    """Progress message written to the stream; never routed."""
    message: str


# ============================================================
# Helpers
# ============================================================

def compose_draft(topic: str, revision: int, notes: Optional[List[str]] = None) -> str:
    """Build the text of a draft. Stands in for an expensive generation call."""
    lines = [f"# {topic.title()}", "", f"Draft {revision} about {topic}."]
    for note in notes or []:
        lines.append(f"- Addressed: {note}")
    return "\n".join(lines)


def parse_feedback(feedback: Any) -> Dict[str, Any]:
    """
    Normalize reviewer feedback.

    Accepts ``True``/``False`` or a dict with ``approved`` and ``notes``.
    Anything else counts as a rejection whose notes are ``str(feedback)``.
    """
    if isinstance(feedback, bool):
        return {"approved": feedback, "notes": ""}
    if isinstance(feedback, dict):
        return {
            "approved": bool(feedback.get("approved", False)),
            "notes": str(feedback.get("notes", "")),
        }
    return {"approved": False, "notes": "" if feedback is None else str(feedback)}


# ============================================================
# Node Handlers
# ============================================================

@node(
    consumes=[StartEvent, RevisionRequested],
    produces=DraftReady,
    name="draft",
    description="Write or rewrite the draft",
)
def draft_node(event: Event, state, ctx) -> DraftReady:
    """
    Produce a draft for ``state["topic"]``.

    Uses state:
    - topic: str
    - review_notes: List[str] - notes collected from earlier reviews

    Updates state with:
    - draft: str
    - revision: int
    """
    topic = state.get("topic", "untitled")
    if isinstance(event, RevisionRequested):
        revision = event.revision
        notes = state.get("review_notes", []) + ([event.notes] if event.notes else [])
        state.set("review_notes", notes)
    else:
        revision = 1
        notes = []

    draft = ctx.checkpoint(f"draft-{revision}", lambda: compose_draft(topic, revision, notes))
    state.update({"draft": draft, "revision": revision})
    ctx.write_event_to_stream(DraftProgress(message=f"Draft {revision} ready"))

    logger.info(f"Drafted revision {revision} for topic '{topic}'")
    return DraftReady(draft=draft, revision=revision)


@node(
    consumes=DraftReady,
    produces=[RevisionRequested, StopEvent],
    name="review",
    description="Human approval of the draft",
)
async def review_node(event: DraftReady, state, ctx) -> Event:
    """
    Suspend for a human decision on the draft.

    Drafts at ``state["max_revisions"]`` (default 3) are approved without
    asking.
    """
    max_revisions = state.get("max_revisions", 3)
    if event.revision >= max_revisions:
        logger.info(f"Revision {event.revision} reached the limit, auto-approving")
        state.set("approved", True)
        return StopEvent(
            result={"draft": event.draft, "revision": event.revision, "approved": True, "auto": True}
        )

    # same timestamp on every re-run of this invocation
    requested_at = ctx.checkpoint("requested_at", lambda: datetime.now().isoformat())
    feedback = parse_feedback(
        ctx.interrupt({
            "question": "Approve this draft?",
            "requested_at": requested_at,
            "draft": event.draft,
            "revision": event.revision,
        })
    )

    if feedback["approved"]:
        state.set("approved", True)
        logger.info(f"Revision {event.revision} approved")
        return StopEvent(
            result={"draft": event.draft, "revision": event.revision, "approved": True, "auto": False}
        )

    logger.info(f"Revision {event.revision} rejected: {feedback['notes']}")
    return RevisionRequested(notes=feedback["notes"], revision=event.revision + 1)


# ============================================================
# Workflow Factory
# ============================================================

def create_content_review_workflow() -> Graph:
    """
    Create a Content Review workflow graph.

    Workflow flow:
    ```
    StartEvent → draft → DraftReady → review ─┬─→ StopEvent (approved)
                   ↑                          │
                   └──── RevisionRequested ───┘
    ```

    Returns:
        Unbuilt Graph instance
    """
    graph = Graph(
        name=WORKFLOW_NAME,
        description=(
            "Drafts content for a topic and loops through human review until "
            "the draft is approved."
        ),
    )
    graph.add_node(draft_node)
    graph.add_node(review_node)
    return graph


async def register_content_review_workflow():
    """
    Register the Content Review workflow so the API can run it by name.
    """
    from eventflow.storage.memory import workflow_storage

    stored = await workflow_storage.register(
        WORKFLOW_NAME,
        create_content_review_workflow,
        description="Draft, review and revise content with a human in the loop",
    )
    logger.info(f"Registered workflow: {WORKFLOW_NAME}")
    return stored


# ============================================================
# Example Usage
# ============================================================

async def run_content_review_demo():
    """
    Demo function: one rejection, then approval.

    Usage:
        import asyncio
        from eventflow.workflows.content_review import run_content_review_demo
        asyncio.run(run_content_review_demo())
    """
    from eventflow.engine.executor import WorkflowEngine

    engine = WorkflowEngine(create_content_review_workflow())

    print("Starting Content Review...")
    result = await engine.run({"topic": "release notes"})
    print(f"Status: {result.status.value}, waiting on: {result.interrupt_payload['question']}")

    result = await engine.resume(result.workflow_id, {"approved": False, "notes": "add a summary"})
    print(f"Status: {result.status.value}, revision {result.interrupt_payload['revision']}")

    result = await engine.resume(result.workflow_id, True)
    print(f"\nExecution Status: {result.status.value}")
    print(f"Dispatches: {result.iterations}")
    print(f"\nFinal draft:\n{result.result['draft']}")
    return result


if __name__ == "__main__":
    import asyncio
    asyncio.run(run_content_review_demo())
