import logging
from typing import Any

from vsearch_db.query.plan_nodes import PlanNode

logger = logging.getLogger(__name__)


class Executor:
    """
    Executor takes a plan (PlanNode) and executes it, managing any needed context.
    """
    def __init__(self, search_engine: Any):
        self.context = {'search_engine': search_engine}

    def execute(self, plan: PlanNode) -> Any:
        logger.debug(f"Executing {type(plan).__name__}")
        return plan.execute(self.context)
