import logging
from typing import Any, Dict

from app.db import assessments as repo
from app.db.database import transaction
from app.errors import NotFoundError

logger = logging.getLogger(__name__)


async def get_or_create_candidate(db, agent_id: int) -> Dict[str, Any]:
    """Promote an agent to a candidate on first contact.

    An existing candidate registered under the agent's email is re-linked to
    this agent rather than duplicated.
    """
    agent = await repo.get_agent(db, agent_id)
    if not agent:
        raise NotFoundError("Agent not found")

    candidate = await repo.find_candidate(db, agent_id, agent["email"])
    if candidate:
        if candidate["agent_id"] != agent_id:
            async with transaction(db):
                await repo.link_candidate_to_agent(db, candidate["id"], agent_id)
            logger.info("Re-linked candidate %s to agent %s", candidate["id"], agent_id)
            candidate["agent_id"] = agent_id
        return candidate

    async with transaction(db):
        candidate_id = await repo.create_candidate(
            db,
            agent_id=agent_id,
            email=agent["email"],
            first_name=agent.get("first_name"),
            last_name=agent.get("last_name"),
        )
    logger.info("Created candidate %s for agent %s", candidate_id, agent_id)
    return await repo.get_candidate(db, candidate_id)
