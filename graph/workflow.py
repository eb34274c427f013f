from functools import partial
from langgraph.graph import StateGraph, START, END
from loguru import logger

from graph.state import DuplicateCheckState
from graph.nodes.capture import capture
from graph.nodes.gather import gather
from graph.nodes.score import score
from graph.nodes.classify import classify
from graph.nodes.warn import warn
from config import MatchingConfig

def build_workflow(gateway, store, config: MatchingConfig):
    """Build the duplicate check workflow around the given collaborators."""
    workflow = StateGraph(DuplicateCheckState)

    # Add nodes
    workflow.add_node("capture", capture)
    workflow.add_node("gather", partial(gather, gateway=gateway, settings=config))
    workflow.add_node("score", partial(score, settings=config))
    workflow.add_node("classify", partial(classify, settings=config))
    workflow.add_node("warn", partial(warn, warning_store=store))

    workflow.add_edge(START, "capture")

    # Too little signal to match responsibly: stop before any lookup
    def after_capture(state: DuplicateCheckState) -> str:
        if state.get("sufficient"):
            return "gather"
        logger.info("Duplicate check short-circuited on insufficient data")
        return "end"

    workflow.add_conditional_edges("capture", after_capture, {"gather": "gather", "end": END})
    workflow.add_edge("gather", "score")
    workflow.add_edge("score", "classify")

    # Only persist a warning when something matched
    def after_classify(state: DuplicateCheckState) -> str:
        return "warn" if state.get("matches") else "end"

    workflow.add_conditional_edges("classify", after_classify, {"warn": "warn", "end": END})
    workflow.add_edge("warn", END)

    return workflow.compile()
