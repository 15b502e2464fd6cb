"""LangGraph state machine that merges feed events into the local question set.

The graph routes each pending event to the node for its kind. Every node
ends the run, so one invocation merges exactly one event.
"""

import logging

from langgraph.graph import END, StateGraph

from qbox.engine.actions import (
    answered_node,
    created_node,
    decide_next_node,
    ignore_node,
    purged_node,
    reported_node,
    restored_node,
    room_closed_node,
    route_event,
    soft_deleted_node,
    upvoted_node,
    visibility_changed_node,
)
from qbox.engine.states import FeedState
from qbox.models.events import FeedEvent

logger = logging.getLogger(__name__)


def build_feed_graph() -> StateGraph:
    """Build and compile the reconciliation graph.

    State flow:
        router → (event kind) → created | upvoted | answered | reported
                               | soft_deleted | restored | purged
                               | visibility_changed | room_closed | ignore → END

    Returns:
        Compiled LangGraph state machine.
    """
    graph = StateGraph(FeedState)

    graph.add_node("router", route_event)
    graph.add_node("created", created_node)
    graph.add_node("upvoted", upvoted_node)
    graph.add_node("answered", answered_node)
    graph.add_node("reported", reported_node)
    graph.add_node("soft_deleted", soft_deleted_node)
    graph.add_node("restored", restored_node)
    graph.add_node("purged", purged_node)
    graph.add_node("visibility_changed", visibility_changed_node)
    graph.add_node("room_closed", room_closed_node)
    graph.add_node("ignore", ignore_node)

    graph.set_entry_point("router")

    for node in (
        "created", "upvoted", "answered", "reported", "soft_deleted",
        "restored", "purged", "visibility_changed", "room_closed", "ignore",
    ):
        graph.add_edge(node, END)

    graph.add_conditional_edges("router", decide_next_node, {
        "created": "created",
        "upvoted": "upvoted",
        "answered": "answered",
        "reported": "reported",
        "soft_deleted": "soft_deleted",
        "restored": "restored",
        "purged": "purged",
        "visibility_changed": "visibility_changed",
        "room_closed": "room_closed",
        "ignore": "ignore",
        "__end__": END,
    })

    return graph.compile()


# Singleton compiled graph
feed_graph = build_feed_graph()


def apply_event(state: FeedState, event: FeedEvent) -> FeedState:
    """Merge one event and return the new state. The input state is left untouched."""
    result = feed_graph.invoke({**state, "pending_event": event})
    return FeedState(**result)
