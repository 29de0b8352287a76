from diamond_deployer.domain.models.deployment import (
    CutAction,
    CutOperation,
    DeploymentRecord,
)
from diamond_deployer.domain.models.facet import ZERO_ADDRESS, FacetRecord

ADDRESS_A = "0x1000000000000000000000000000000000000001"
ADDRESS_A2 = "0x1000000000000000000000000000000000000011"
ADDRESS_B = "0x2000000000000000000000000000000000000002"
DIAMOND = "0x5000000000000000000000000000000000000005"


def make_record():
    return DeploymentRecord(
        diamond_name="TestDiamond",
        network_name="localhost",
        chain_id=31337,
        diamond_address=DIAMOND,
        facets={
            "FacetA": FacetRecord(
                name="FacetA",
                address=ADDRESS_A,
                selectors=["0x11111111", "0x22222222"],
                version=0,
            )
        },
    )


def test_record_serializes_with_deployment_file_keys():
    record = make_record()
    document = record.model_dump(mode="json", by_alias=True)

    assert document["DiamondAddress"] == DIAMOND
    assert document["protocolVersion"] == 0
    assert document["DeployedFacets"]["FacetA"]["funcSelectors"] == [
        "0x11111111",
        "0x22222222",
    ]
    assert DeploymentRecord.model_validate(document) == record


def test_apply_cut_moves_selectors_to_new_facet():
    record = make_record()
    deployed = {ADDRESS_B: FacetRecord(name="FacetB", address=ADDRESS_B, version=1)}

    record.apply_cut(
        [
            CutOperation(
                action=CutAction.REPLACE,
                facet_address=ADDRESS_B,
                facet_name="FacetB",
                selectors=["0x22222222"],
            )
        ],
        deployed,
    )

    assert record.facets["FacetA"].selectors == ["0x11111111"]
    assert record.facets["FacetB"].selectors == ["0x22222222"]
    assert record.facets["FacetB"].version == 1


def test_apply_cut_keeps_superseded_facet_under_address_key():
    record = make_record()
    deployed = {ADDRESS_A2: FacetRecord(name="FacetA", address=ADDRESS_A2, version=1)}

    record.apply_cut(
        [
            CutOperation(
                action=CutAction.REPLACE,
                facet_address=ADDRESS_A2,
                facet_name="FacetA",
                selectors=["0x11111111"],
            )
        ],
        deployed,
    )

    assert record.facets["FacetA"].address == ADDRESS_A2
    assert record.facets["FacetA"].selectors == ["0x11111111"]
    superseded = record.facets[f"FacetA@{ADDRESS_A}"]
    assert superseded.selectors == ["0x22222222"]
    assert record.selector_facet_names()["0x22222222"] == f"FacetA@{ADDRESS_A}"


def test_apply_cut_drops_facets_without_selectors():
    record = make_record()

    record.apply_cut(
        [
            CutOperation(
                action=CutAction.REMOVE,
                facet_address=ZERO_ADDRESS,
                selectors=["0x11111111", "0x22222222"],
            )
        ]
    )

    assert record.facets == {}
    assert record.selector_owners() == {}
