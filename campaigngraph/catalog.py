"""Task catalog — named campaign templates the builder expands goals through."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field

from campaigngraph.errors import InvalidGraphError
from campaigngraph.models import GoalDescription, TaskSpec

logger = logging.getLogger(__name__)


@dataclass
class CampaignTemplate:
    name: str
    title: str
    description: str
    tasks: list[TaskSpec] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Built-in templates
# ---------------------------------------------------------------------------

AI_STARTUP_LAUNCH = CampaignTemplate(
    name="ai_startup_launch",
    title="AI Startup Launch",
    description="Comprehensive campaign for AI/ML startup product launches",
    tasks=[
        TaskSpec(
            id="segment-contacts",
            type="segment",
            agent="crm-agent",
            description="Identify and segment target journalists based on campaign criteria",
        ),
        TaskSpec(
            id="draft-generic",
            type="draft",
            agent="content-agent",
            description="Create baseline pitch template with key messages",
            prerequisites=["segment-contacts"],
        ),
        TaskSpec(
            id="personalize-tier1",
            type="personalize",
            agent="content-agent",
            description="Deep personalization for top-tier contacts",
            prerequisites=["draft-generic"],
            input={"tier": 1},
        ),
        TaskSpec(
            id="personalize-tier2",
            type="personalize",
            agent="content-agent",
            description="Medium personalization for mid-tier contacts",
            prerequisites=["draft-generic"],
            input={"tier": 2},
        ),
        TaskSpec(
            id="review-pitches",
            type="review",
            agent="quality-agent",
            description="Quality check and approve all pitches",
            prerequisites=["personalize-tier1", "personalize-tier2"],
        ),
        TaskSpec(
            id="create-workflow",
            type="workflow",
            agent="workflow-agent",
            description="Set up automated pitch workflow with batching and timing",
            prerequisites=["review-pitches"],
        ),
        TaskSpec(
            id="execute-campaign",
            type="execute",
            agent="execution-agent",
            description="Deploy and monitor pitch delivery",
            prerequisites=["create-workflow"],
        ),
        TaskSpec(
            id="setup-monitoring",
            type="monitor",
            agent="monitoring-agent",
            description="Configure alerts and tracking for responses",
            prerequisites=["execute-campaign"],
        ),
    ],
)

PRODUCT_ANNOUNCEMENT = CampaignTemplate(
    name="product_announcement",
    title="Product Announcement",
    description="Standard product announcement campaign",
    tasks=[
        TaskSpec(
            id="identify-targets",
            type="segment",
            agent="crm-agent",
            description="Find journalists covering the product category",
        ),
        TaskSpec(
            id="create-announcement",
            type="draft",
            agent="content-agent",
            description="Draft product announcement pitch",
            prerequisites=["identify-targets"],
        ),
        TaskSpec(
            id="personalize-top-tier",
            type="personalize",
            agent="content-agent",
            description="Customize for priority journalists",
            prerequisites=["create-announcement"],
            input={"tier": 1},
        ),
        TaskSpec(
            id="schedule-send",
            type="execute",
            agent="execution-agent",
            description="Deploy pitches with timing optimization",
            prerequisites=["personalize-top-tier"],
        ),
        TaskSpec(
            id="track-mentions",
            type="monitor",
            agent="monitoring-agent",
            description="Monitor for product mentions and coverage",
            prerequisites=["schedule-send"],
        ),
    ],
)

THOUGHT_LEADERSHIP = CampaignTemplate(
    name="thought_leadership",
    title="Thought Leadership",
    description="Executive visibility and expert positioning campaign",
    tasks=[
        TaskSpec(
            id="research-opportunities",
            type="research",
            agent="research-agent",
            description="Find speaking, podcast, and article opportunities",
        ),
        TaskSpec(
            id="identify-contacts",
            type="segment",
            agent="crm-agent",
            description="Find editors and producers for thought leadership",
            prerequisites=["research-opportunities"],
        ),
        TaskSpec(
            id="draft-pitches",
            type="draft",
            agent="content-agent",
            description="Create thought leadership pitch angles",
            prerequisites=["identify-contacts"],
        ),
        TaskSpec(
            id="personalize-all",
            type="personalize",
            agent="content-agent",
            description="High-touch personalization for all targets",
            prerequisites=["draft-pitches"],
        ),
        TaskSpec(
            id="execute-outreach",
            type="execute",
            agent="execution-agent",
            description="Deploy personalized outreach campaign",
            prerequisites=["personalize-all"],
        ),
        TaskSpec(
            id="track-engagement",
            type="monitor",
            agent="monitoring-agent",
            description="Monitor responses and opportunities",
            prerequisites=["execute-outreach"],
        ),
    ],
)

BUILTIN_TEMPLATES = [AI_STARTUP_LAUNCH, PRODUCT_ANNOUNCEMENT, THOUGHT_LEADERSHIP]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TaskCatalog:
    """Registry of campaign templates."""

    def __init__(self, default: str | None = None):
        self._templates: dict[str, CampaignTemplate] = {}
        self.default = default

    def register(self, template: CampaignTemplate):
        self._templates[template.name] = template
        if self.default is None:
            self.default = template.name

    def get(self, name: str) -> CampaignTemplate | None:
        return self._templates.get(name)

    def names(self) -> list[str]:
        return list(self._templates.keys())

    def templates(self) -> list[CampaignTemplate]:
        return list(self._templates.values())

    def expand(self, goal: GoalDescription) -> list[TaskSpec]:
        """Resolve the goal's template into concrete task specs with goal context injected."""
        name = goal.template or self.default
        template = self._templates.get(name) if name else None
        if template is None:
            raise InvalidGraphError(f"Unknown campaign template: {name}")

        shared = {
            "objective": goal.objective,
            "organization_id": goal.organization_id,
            "campaign_id": goal.campaign_id,
            "deadline": goal.deadline,
            **goal.context,
        }
        if goal.contact_ids:
            shared["contact_ids"] = list(goal.contact_ids)

        specs = []
        for task in template.tasks:
            spec = copy.deepcopy(task)
            spec.input = {**shared, "description": spec.description, **spec.input}
            specs.append(spec)

        logger.debug(f"Expanded template {name} into {len(specs)} tasks")
        return specs


def create_default_catalog() -> TaskCatalog:
    """Catalog with every built-in template; product announcement is the default."""
    catalog = TaskCatalog(default=PRODUCT_ANNOUNCEMENT.name)
    for template in BUILTIN_TEMPLATES:
        catalog.register(template)
    return catalog
