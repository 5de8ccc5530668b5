"""Scenario template routes."""
from fastapi import APIRouter, HTTPException
from typing import List, Dict, Any

from soctrainer.errors import UnknownScenarioError
from soctrainer.services.chains import get_template, list_templates, difficulty_for, infection_vector_for

router = APIRouter(prefix="/api/scenarios", tags=["scenarios"])


@router.get("")
async def list_scenarios() -> List[Dict[str, Any]]:
    """List all available scenario templates."""
    return list_templates()


@router.get("/{story_type}")
async def get_scenario(story_type: str) -> Dict[str, Any]:
    """Get one template with its ordered stages."""
    try:
        template = get_template(story_type)
    except UnknownScenarioError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "story_type": story_type,
        "name": template["name"],
        "description": template["description"],
        "difficulty": difficulty_for(len(template["stages"])).value,
        "initial_infection_vector": infection_vector_for(story_type),
        "stages": [
            {"stage": stage.value, "technique_id": technique_id, "technique_name": name}
            for stage, technique_id, name in template["stages"]
        ],
    }
