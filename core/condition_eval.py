from typing import Optional, Sequence
import logging

from flowgraph.schema import Route, StepBase

logger = logging.getLogger(__name__)


def normalize(text: str) -> str:
    return (text or "").strip().lower()


class ConditionEvaluator:
    """Picks the outgoing edge of a step for a given reply.

    Routes are tested in order; a route matches when its normalised condition
    is a substring of the normalised reply. The first match wins.
    """

    def match_route(self, routes: Sequence[Route], reply: str) -> Optional[Route]:
        text = normalize(reply)
        for route in routes:
            if normalize(route.condition) in text:
                logger.debug(f"Route '{route.condition}' matched -> {route.target_id}")
                return route
        logger.debug("No route matched")
        return None

    def next_target(self, step: StepBase, reply: Optional[str]) -> Optional[str]:
        """Target id for this step: matched route, else default edge, else None.

        ``reply=None`` means the step did not wait for input, so routes are
        not consulted.
        """
        if reply is not None and step.routes:
            route = self.match_route(step.routes, reply)
            if route is not None:
                return route.target_id
        return step.default_next

