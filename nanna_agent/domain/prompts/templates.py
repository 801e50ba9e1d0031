"""Prompt templates for the agent's decision points.

Each template is a pure builder paired with a parser for the model's
keyword-prefixed reply. Parsers return None when the reply is ambiguous.
"""

from typing import List, Optional
from enum import Enum

from nanna_agent.domain.entities.models import QueryResult
from nanna_agent.domain.context.rag import summarize_results


class Decision(str, Enum):
    """Outcome of the query-vs-act decision"""
    QUERY = "query"
    PROCEED = "proceed"


class CompletionStatus(str, Enum):
    """Outcome of the completion check"""
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"


class PlanningPrompt:
    """Asks the model to plan the next action"""

    @staticmethod
    def build(user_request: str, entity_count: int, rag_summary: str) -> str:
        return (
            "You are a code assistant planning an action.\n"
            f"USER REQUEST: {user_request}\n"
            f"WORKSPACE: {entity_count} entities\n"
            f"RELEVANT: {rag_summary}\n"
            "\n"
            "Plan the next action in 1-2 sentences."
        )

    @staticmethod
    def build_from_results(user_request: str, entity_count: int, results: List[QueryResult]) -> str:
        return PlanningPrompt.build(user_request, entity_count, summarize_results(results))


class DecisionPrompt:
    """Asks whether more context is needed (QUERY) or the agent can act (PROCEED)"""

    @staticmethod
    def build(user_request: str, plan: str, entity_count: int, actions_performed: int) -> str:
        return (
            "You are a code assistant deciding the next step.\n"
            f"USER REQUEST: {user_request}\n"
            f"CURRENT PLAN: {plan}\n"
            f"WORKSPACE: {entity_count} entities\n"
            f"ACTIONS PERFORMED: {actions_performed}\n"
            "\n"
            "Do you need more context (QUERY) or are you ready to act (PROCEED)?\n"
            "Respond with QUERY or PROCEED followed by brief reasoning."
        )

    @staticmethod
    def parse(reply: str) -> Optional[Decision]:
        upper = reply.upper()
        has_query = "QUERY" in upper
        has_proceed = "PROCEED" in upper

        if has_query and has_proceed:
            return None
        if has_query:
            return Decision.QUERY
        if has_proceed:
            return Decision.PROCEED
        return None


class CompletionPrompt:
    """Asks whether the user's request is COMPLETE or INCOMPLETE"""

    @staticmethod
    def build(user_request: str, actions_performed: int, entity_summary: str) -> str:
        summary = entity_summary or "No entities created yet"
        return (
            "You are a code assistant checking task completion.\n"
            f"USER REQUEST: {user_request}\n"
            f"ACTIONS PERFORMED: {actions_performed}\n"
            f"CURRENT ENTITIES: {summary}\n"
            "\n"
            "Is the user's request complete (COMPLETE) or does more work need to be done (INCOMPLETE)?\n"
            "Respond with COMPLETE or INCOMPLETE followed by brief reasoning."
        )

    @staticmethod
    def parse(reply: str) -> Optional[CompletionStatus]:
        upper = reply.upper()
        has_incomplete = "INCOMPLETE" in upper

        # INCOMPLETE contains COMPLETE, so a standalone COMPLETE shows up as a second occurrence
        if has_incomplete and upper.count("COMPLETE") > 1:
            return None
        if has_incomplete:
            return CompletionStatus.INCOMPLETE
        if "COMPLETE" in upper:
            return CompletionStatus.COMPLETE
        return None
