from diamond_deployer.domain.models.deployment import CutAction
from diamond_deployer.domain.registry import SelectorRegistry


def test_higher_priority_wins_regardless_of_order():
    forward = SelectorRegistry()
    forward.register("0x22222222", "FacetA", 1)
    forward.register("0x22222222", "FacetB", 2)

    backward = SelectorRegistry()
    backward.register("0x22222222", "FacetB", 2)
    backward.register("0x22222222", "FacetA", 1)

    assert forward.resolve("0x22222222") == "FacetB"
    assert backward.resolve("0x22222222") == "FacetB"
    assert not forward.tie_collisions()
    assert not backward.tie_collisions()


def test_equal_priority_last_registration_wins_and_is_recorded():
    registry = SelectorRegistry()
    registry.register("0x22222222", "FacetA", 5)
    registry.register("0x22222222", "FacetB", 5)

    assert registry.resolve("0x22222222") == "FacetB"
    ties = registry.tie_collisions()
    assert len(ties) == 1
    assert ties[0].winner == "FacetB"
    assert ties[0].loser == "FacetA"


def test_lower_priority_claim_is_dropped():
    registry = SelectorRegistry()
    registry.register("0x22222222", "FacetB", 2)
    registry.register("0x22222222", "FacetA", 1)

    assert registry.entry("0x22222222").priority == 2
    assert registry.collisions[0].loser == "FacetA"
    assert registry.collisions[0].tie is False


def test_same_facet_reregistration_is_not_a_collision():
    registry = SelectorRegistry()
    registry.register("0x11111111", "FacetA", 1)
    registry.register("11111111", "FacetA", 1)

    assert len(registry) == 1
    assert registry.collisions == []


def test_from_config_and_lookups(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x11111111", "0x22222222"], priority=1),
            facet_factory("FacetB", ["0x22222222", "0x33333333"], priority=2),
        ]
    )
    registry = SelectorRegistry.from_config(config)

    assert registry.mapping() == {
        "0x11111111": "FacetA",
        "0x22222222": "FacetB",
        "0x33333333": "FacetB",
    }
    assert registry.entries_for_facet("FacetB") == {"0x22222222", "0x33333333"}
    assert "0x11111111" in registry
    assert "0x44444444" not in registry
    assert "garbage" not in registry
    assert list(registry) == ["0x11111111", "0x22222222", "0x33333333"]


def test_set_action_updates_entry():
    registry = SelectorRegistry()
    registry.register("0x11111111", "FacetA", 1)
    assert registry.entry("0x11111111").action is CutAction.NONE

    registry.set_action("0x11111111", CutAction.ADD)
    assert registry.entry("0x11111111").action is CutAction.ADD
