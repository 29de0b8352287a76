import pytest

from diamond_deployer.core.exceptions import ConfigurationError, StateInconsistencyError
from diamond_deployer.domain.models.deployment import CutAction
from diamond_deployer.domain.models.facet import ZERO_ADDRESS
from diamond_deployer.domain.models.selector import DIAMOND_CUT_SELECTOR
from diamond_deployer.domain.reconciler import FacetReconciler, owners_from_facets, simulate_cut

ADDRESS_A = "0x1000000000000000000000000000000000000001"
ADDRESS_B = "0x2000000000000000000000000000000000000002"
ADDRESS_C = "0x3000000000000000000000000000000000000003"
CUT_ADDRESS = "0x4000000000000000000000000000000000000004"
DIAMOND = "0x5000000000000000000000000000000000000005"
STRANGER = "0x6000000000000000000000000000000000000006"


def as_tuples(operations):
    return [(op.action, op.facet_address, op.selectors) for op in operations]


@pytest.fixture
def collision_config(facet_factory, config_factory):
    return config_factory(
        [
            facet_factory("FacetA", ["0x11111111", "0x22222222"], priority=1),
            facet_factory("FacetB", ["0x22222222", "0x33333333"], priority=2),
        ]
    )


def test_fresh_diamond_higher_priority_takes_collision(collision_config):
    reconciler = FacetReconciler(collision_config)
    operations = reconciler.reconcile({"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}, {})

    assert as_tuples(operations) == [
        (CutAction.ADD, ADDRESS_A, ["0x11111111"]),
        (CutAction.ADD, ADDRESS_B, ["0x22222222", "0x33333333"]),
    ]
    assert [op.facet_name for op in operations] == ["FacetA", "FacetB"]


def test_reassigned_selector_is_replaced_not_removed(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x11111111"], priority=1),
            facet_factory("FacetB", ["0x22222222"], priority=1),
        ]
    )
    on_chain = {ADDRESS_A: ["0x11111111", "0x22222222"]}

    operations = FacetReconciler(config).reconcile(
        {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}, on_chain
    )

    assert as_tuples(operations) == [(CutAction.REPLACE, ADDRESS_B, ["0x22222222"])]


def test_reconcile_is_idempotent(collision_config):
    addresses = {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}
    reconciler = FacetReconciler(collision_config)

    first = reconciler.reconcile(addresses, {})
    owners = simulate_cut({}, first)
    on_chain = {}
    for selector, address in owners.items():
        on_chain.setdefault(address, []).append(selector)

    assert reconciler.reconcile(addresses, on_chain) == []
    assert reconciler.is_converged(addresses, on_chain)


def test_priority_resolution_ignores_input_order(facet_factory, config_factory):
    addresses = {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}
    forward = config_factory(
        [
            facet_factory("FacetA", ["0x11111111", "0x22222222"], priority=1),
            facet_factory("FacetB", ["0x22222222", "0x33333333"], priority=2),
        ]
    )
    backward = config_factory(list(reversed(forward.facets)))

    forward_owners = simulate_cut({}, FacetReconciler(forward).reconcile(addresses, {}))
    backward_owners = simulate_cut({}, FacetReconciler(backward).reconcile(addresses, {}))

    assert forward_owners == backward_owners
    assert forward_owners["0x22222222"] == ADDRESS_B


def test_operations_converge_to_registry_mapping(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x11111111"], priority=1),
            facet_factory("FacetB", ["0x22222222", "0x33333333"], priority=1),
        ]
    )
    addresses = {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}
    on_chain = {
        ADDRESS_A: ["0x11111111", "0x99999999"],
        ADDRESS_C: ["0x22222222"],
    }
    reconciler = FacetReconciler(config)

    operations = reconciler.reconcile(addresses, on_chain)

    assert [op.action for op in operations] == [
        CutAction.ADD,
        CutAction.REPLACE,
        CutAction.REMOVE,
    ]
    expected = {
        selector: addresses[facet_name]
        for selector, facet_name in reconciler.registry.mapping().items()
    }
    assert simulate_cut(owners_from_facets(on_chain), operations) == expected


def test_remove_operations_use_zero_address(facet_factory, config_factory):
    config = config_factory([facet_factory("FacetA", ["0x11111111"])])
    operations = FacetReconciler(config).reconcile(
        {"FacetA": ADDRESS_A}, {ADDRESS_A: ["0x11111111", "0x99999999"]}
    )

    assert len(operations) == 1
    remove = operations[0]
    assert remove.action is CutAction.REMOVE
    assert remove.facet_address == ZERO_ADDRESS
    assert remove.to_facet_cut() == (ZERO_ADDRESS, 2, [bytes.fromhex("99999999")])


def test_registry_records_actions(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x11111111"]),
            facet_factory("FacetB", ["0x22222222"]),
        ]
    )
    reconciler = FacetReconciler(config)
    reconciler.reconcile(
        {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}, {ADDRESS_A: ["0x11111111"]}
    )

    assert reconciler.registry.entry("0x11111111").action is CutAction.NONE
    assert reconciler.registry.entry("0x22222222").action is CutAction.ADD


def test_cut_selector_is_never_removed_as_orphan(facet_factory, config_factory):
    config = config_factory([facet_factory("FacetA", ["0x11111111"])])
    on_chain = {CUT_ADDRESS: [DIAMOND_CUT_SELECTOR], ADDRESS_A: ["0x11111111"]}

    operations = FacetReconciler(config).reconcile({"FacetA": ADDRESS_A}, on_chain)

    assert operations == []


def test_cut_facet_selectors_are_protected_unless_allowed(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("DiamondCutFacet", [DIAMOND_CUT_SELECTOR], priority=100),
            facet_factory("FacetA", ["0x11111111"]),
        ]
    )
    addresses = {"DiamondCutFacet": CUT_ADDRESS, "FacetA": ADDRESS_A}
    on_chain = {
        CUT_ADDRESS: [DIAMOND_CUT_SELECTOR, "0x44444444"],
        ADDRESS_A: ["0x11111111"],
    }

    assert FacetReconciler(config).reconcile(addresses, on_chain) == []

    operations = FacetReconciler(config, allow_cut_facet_removal=True).reconcile(
        addresses, on_chain
    )
    assert as_tuples(operations) == [(CutAction.REMOVE, ZERO_ADDRESS, ["0x44444444"])]


def test_unmanaged_owner_of_orphan_is_reported(facet_factory, config_factory):
    config = config_factory([facet_factory("FacetA", ["0x11111111"])])
    on_chain = {ADDRESS_A: ["0x11111111"], STRANGER: ["0x55555555", "0x66666666"]}

    with pytest.raises(StateInconsistencyError) as exc_info:
        FacetReconciler(config).reconcile(
            {"FacetA": ADDRESS_A}, on_chain, managed_addresses={ADDRESS_A}
        )

    conflicts = exc_info.value.conflicts
    assert len(conflicts) == 2
    assert "0x55555555" in conflicts[0]
    assert exc_info.value.error_code == "STATE_INCONSISTENCY"


def test_unmanaged_owner_is_replaced_when_targeted(facet_factory, config_factory):
    config = config_factory([facet_factory("FacetA", ["0x11111111"])])

    operations = FacetReconciler(config).reconcile(
        {"FacetA": ADDRESS_A}, {STRANGER: ["0x11111111"]}, managed_addresses=set()
    )

    assert as_tuples(operations) == [(CutAction.REPLACE, ADDRESS_A, ["0x11111111"])]


def test_immutable_selectors_are_left_alone(facet_factory, config_factory):
    config = config_factory([facet_factory("FacetA", ["0x11111111"])])
    on_chain = {DIAMOND: ["0x77777777"]}

    operations = FacetReconciler(config).reconcile(
        {"FacetA": ADDRESS_A}, on_chain, diamond_address=DIAMOND
    )
    assert as_tuples(operations) == [(CutAction.ADD, ADDRESS_A, ["0x11111111"])]

    claiming = config_factory([facet_factory("FacetA", ["0x11111111", "0x77777777"])])
    with pytest.raises(StateInconsistencyError):
        FacetReconciler(claiming).reconcile(
            {"FacetA": ADDRESS_A}, on_chain, diamond_address=DIAMOND
        )


def test_equal_priority_tie_defaults_to_last_processed(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x22222222"], priority=1),
            facet_factory("FacetB", ["0x22222222"], priority=1),
        ]
    )
    operations = FacetReconciler(config).reconcile(
        {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}, {}
    )
    assert as_tuples(operations) == [(CutAction.ADD, ADDRESS_B, ["0x22222222"])]


def test_strict_mode_rejects_equal_priority_ties(facet_factory, config_factory):
    config = config_factory(
        [
            facet_factory("FacetA", ["0x22222222", "0x33333333"], priority=1),
            facet_factory("FacetB", ["0x22222222", "0x33333333"], priority=1),
        ]
    )

    with pytest.raises(ConfigurationError) as exc_info:
        FacetReconciler(config, strict_priority_ties=True).reconcile(
            {"FacetA": ADDRESS_A, "FacetB": ADDRESS_B}, {}
        )

    assert len(exc_info.value.problems) == 2


def test_missing_facet_address_is_a_configuration_error(collision_config):
    with pytest.raises(ConfigurationError) as exc_info:
        FacetReconciler(collision_config).reconcile({}, {})

    assert exc_info.value.problems == [
        "No deployed address for facet FacetA",
        "No deployed address for facet FacetB",
    ]


def test_none_action_has_no_cut_code():
    assert CutAction.ADD.code == 0
    assert CutAction.REPLACE.code == 1
    assert CutAction.REMOVE.code == 2
    with pytest.raises(ValueError):
        CutAction.NONE.code
