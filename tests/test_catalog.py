"""Test the task catalog."""

import pytest

from campaigngraph.catalog import CampaignTemplate, TaskCatalog, create_default_catalog
from campaigngraph.errors import InvalidGraphError
from campaigngraph.models import GoalDescription, TaskSpec


def test_default_catalog_templates():
    catalog = create_default_catalog()
    assert set(catalog.names()) == {"ai_startup_launch", "product_announcement", "thought_leadership"}
    assert catalog.default == "product_announcement"
    assert len(catalog.get("product_announcement").tasks) == 5
    assert len(catalog.get("thought_leadership").tasks) == 6
    assert catalog.get("nope") is None


def test_expand_injects_goal_context():
    catalog = create_default_catalog()
    goal = GoalDescription(
        organization_id="org",
        objective="Announce v2",
        campaign_id="camp-9",
        deadline=1700000000.0,
        contact_ids=("c1", "c2"),
        context={"industry": "fintech"},
    )
    specs = catalog.expand(goal)

    assert [s.id for s in specs][0] == "identify-targets"
    first = specs[0]
    assert first.input["objective"] == "Announce v2"
    assert first.input["campaign_id"] == "camp-9"
    assert first.input["contact_ids"] == ["c1", "c2"]
    assert first.input["industry"] == "fintech"
    assert first.input["description"] == first.description

    tiered = next(s for s in specs if s.id == "personalize-top-tier")
    assert tiered.input["tier"] == 1


def test_expand_does_not_mutate_template():
    catalog = create_default_catalog()
    catalog.expand(GoalDescription(organization_id="org", objective="x", template="thought_leadership"))
    assert catalog.get("thought_leadership").tasks[0].input == {}


def test_unknown_template():
    catalog = create_default_catalog()
    with pytest.raises(InvalidGraphError, match="Unknown campaign template"):
        catalog.expand(GoalDescription(organization_id="org", objective="x", template="nope"))


def test_first_registered_template_becomes_default():
    catalog = TaskCatalog()
    catalog.register(CampaignTemplate(name="solo", title="Solo", description="", tasks=[TaskSpec(id="a", type="t")]))
    assert catalog.default == "solo"
    specs = catalog.expand(GoalDescription(organization_id="org", objective="x"))
    assert [s.id for s in specs] == ["a"]
