"""
LLM-assisted crew suggestions.
STRATEGY: the allocator's availability filter decides WHO may be suggested;
Gemini only re-orders that list and explains its picks. Any model failure
(no key, quota, malformed JSON) falls back to the rule-based scorer.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, List, Optional, Tuple

import google.generativeai as genai
from pydantic import BaseModel, Field, ValidationError

from models import Location, Resource, TimeWindow
from .allocator import ResourceAllocator, validate_window
from .config import SchedulerSettings

logger = logging.getLogger(__name__)


class CrewSuggestion(BaseModel):
    resource_id: str
    name: str = ""
    score: float = Field(default=0.0, description="0-1 for rules, model-reported otherwise")
    reason: str = ""
    source: str = Field(default="rules", description="'model' or 'rules'")


class _ModelPick(BaseModel):
    """Shape we ask Gemini to return for every pick."""
    resource_id: str
    score: float = 0.0
    reason: str = ""


class CrewAdvisor:
    def __init__(self, allocator: ResourceAllocator, settings: SchedulerSettings, model: Any = None):
        self.allocator = allocator
        self.settings = settings
        self.model = model
        self.total_cost = 0.0

        if self.model is None and settings.google_api_key:
            genai.configure(api_key=settings.google_api_key)
            self.model = genai.GenerativeModel(settings.advisor_model)

    def _estimate_cost(self, prompt_tokens: int, response_tokens: int) -> float:
        return (prompt_tokens * 0.075 + response_tokens * 0.30) / 1_000_000

    def _robust_parse_json(self, raw_text: str) -> List[Any]:
        """
        Handles Markdown fences and the usual shape drift ({"suggestions": [...]}, single object).
        """
        if not raw_text:
            return []

        clean_text = re.sub(r"```json\s*|\s*```", "", raw_text).strip()

        try:
            data = json.loads(clean_text)
        except json.JSONDecodeError:
            # Fallback: pull the first list out of surrounding prose
            match = re.search(r'(\[.*\])', clean_text, re.DOTALL)
            if not match:
                return []
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                return []

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ['suggestions', 'crew', 'resources', 'result']:
                if key in data and isinstance(data[key], list):
                    return data[key]
            return [data]
        return []

    def suggest(
        self,
        category: str,
        window: TimeWindow,
        location: Optional[Location],
        now: datetime,
        limit: int = 5,
        event_title: str = "",
        event_category: Optional[str] = None
    ) -> List[CrewSuggestion]:
        """
        Best available resources of `category` for the window, at most `limit`.
        """
        validate_window(window)
        candidates = self.allocator.find_candidates(category, window, location, now, event_category=event_category)
        if not candidates:
            logger.info(f"No available '{category}' resources to suggest")
            return []

        if self.model is not None:
            picks = self._ask_model(candidates, category, window, location, event_title)
            if picks:
                return picks[:limit]
            logger.info("Model gave no usable suggestions; using rule-based ranking")

        return self._rule_based(candidates, location, now, event_category)[:limit]

    def _rule_based(
        self,
        candidates: List[Tuple[float, Resource]],
        location: Optional[Location],
        now: datetime,
        event_category: Optional[str] = None
    ) -> List[CrewSuggestion]:
        scorer = self.allocator.scorer
        return [
            CrewSuggestion(
                resource_id=resource.id,
                name=resource.name,
                score=round(score, 4),
                reason=scorer.explain(resource, location, now, event_category),
                source="rules"
            )
            for score, resource in candidates
        ]

    def _ask_model(
        self,
        candidates: List[Tuple[float, Resource]],
        category: str,
        window: TimeWindow,
        location: Optional[Location],
        event_title: str
    ) -> List[CrewSuggestion]:
        by_id = {resource.id: resource for _, resource in candidates}
        roster = [
            {
                "resource_id": r.id,
                "name": r.name,
                "kind": r.kind.value,
                "location": r.location.name if r.location else None,
                "last_maintenance_at": r.last_maintenance_at.isoformat() if r.last_maintenance_at else None,
                "condition": r.condition,
                "expertise": r.expertise,
                "languages": r.languages,
            }
            for r in by_id.values()
        ]

        prompt = f"""
        You are an expert media assignment manager. Rank the best crew for a coverage event.

        EVENT:
        - title: {event_title or 'untitled'}
        - needs: {category}
        - start: {window.start.isoformat()}
        - end: {window.end.isoformat()}
        - location: {location.name if location else 'unknown'}

        AVAILABLE (you may ONLY pick from this list):
        {json.dumps(roster)}

        OUTPUT FORMAT:
        A single valid JSON Array, best first. Each object:
        {{ "resource_id": "<id from the list>", "score": <number 0-1>, "reason": "<one sentence>" }}
        """

        try:
            generation_config = genai.GenerationConfig(
                response_mime_type="application/json",
                max_output_tokens=2000,
                temperature=0.3
            )
            response = self.model.generate_content(prompt, generation_config=generation_config)

            usage = getattr(response, 'usage_metadata', None)
            if usage is not None:
                self.total_cost += self._estimate_cost(usage.prompt_token_count, usage.candidates_token_count)

            raw_picks = self._robust_parse_json(response.text)
        except Exception as e:
            logger.error(f"Crew suggestion request failed: {e}")
            return []

        suggestions = []
        seen = set()
        for i, item in enumerate(raw_picks):
            try:
                pick = _ModelPick(**item)
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping malformed suggestion {i}: {e}")
                continue
            # The model may not invent crew or repeat itself
            if pick.resource_id not in by_id or pick.resource_id in seen:
                continue
            seen.add(pick.resource_id)
            suggestions.append(CrewSuggestion(
                resource_id=pick.resource_id,
                name=by_id[pick.resource_id].name,
                score=pick.score,
                reason=pick.reason,
                source="model"
            ))
        return suggestions
