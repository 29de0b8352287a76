import pytest

from diamond_deployer.core.exceptions import DeploymentInProgressError
from diamond_deployer.domain.models.deployment import DeploymentRecord, DeploymentStatus
from diamond_deployer.domain.models.facet import FacetRecord
from diamond_deployer.domain.state_tracker import (
    DeploymentStateTracker,
    DriftKind,
    compute_status,
    detect_drift,
)

ADDRESS_A = "0x1000000000000000000000000000000000000001"
ADDRESS_B = "0x2000000000000000000000000000000000000002"
DIAMOND = "0x5000000000000000000000000000000000000005"


@pytest.fixture
def config(facet_factory, config_factory):
    return config_factory(
        [
            facet_factory("FacetA", ["0x11111111"], priority=1),
            facet_factory("FacetB", ["0x22222222"], priority=1),
        ],
        protocol_version=1,
    )


@pytest.fixture
def matching_record():
    return DeploymentRecord(
        diamond_name="TestDiamond",
        network_name="localhost",
        chain_id=31337,
        diamond_address=DIAMOND,
        protocol_version=1,
        facets={
            "FacetA": FacetRecord(name="FacetA", address=ADDRESS_A, selectors=["0x11111111"]),
            "FacetB": FacetRecord(name="FacetB", address=ADDRESS_B, selectors=["0x22222222"]),
        },
    )


def test_no_record_is_not_deployed(config):
    assert compute_status(None, config) is DeploymentStatus.NOT_DEPLOYED
    empty = DeploymentRecord(diamond_name="TestDiamond", network_name="localhost")
    assert compute_status(empty, config) is DeploymentStatus.NOT_DEPLOYED


def test_matching_record_is_completed(config, matching_record):
    assert detect_drift(matching_record, config) == []
    assert compute_status(matching_record, config) is DeploymentStatus.COMPLETED


def test_moved_selector_is_drift(facet_factory, config_factory, matching_record):
    moved = config_factory(
        [
            facet_factory("FacetA", ["0x11111111", "0x22222222"], priority=2),
            facet_factory("FacetB", ["0x33333333"], priority=1),
        ],
        protocol_version=1,
    )

    kinds = {(item.kind, item.selector) for item in detect_drift(matching_record, moved)}

    assert (DriftKind.SELECTOR_MOVED, "0x22222222") in kinds
    assert (DriftKind.SELECTOR_ADDED, "0x33333333") in kinds
    assert compute_status(matching_record, moved) is DeploymentStatus.UPGRADE_AVAILABLE


def test_removed_selector_is_drift(facet_factory, config_factory, matching_record):
    shrunk = config_factory([facet_factory("FacetA", ["0x11111111"])], protocol_version=1)

    drift = detect_drift(matching_record, shrunk)

    assert [(item.kind, item.selector) for item in drift] == [
        (DriftKind.SELECTOR_REMOVED, "0x22222222")
    ]


def test_version_bumps_are_drift(facet_factory, config_factory, matching_record):
    bumped = config_factory(
        [
            facet_factory("FacetA", ["0x11111111"], version=1),
            facet_factory("FacetB", ["0x22222222"]),
        ],
        protocol_version=2,
    )

    kinds = [item.kind for item in detect_drift(matching_record, bumped)]

    assert kinds == [DriftKind.FACET_VERSION, DriftKind.PROTOCOL_VERSION]


def test_older_protocol_version_is_not_upgrade(config, matching_record):
    matching_record.protocol_version = 5
    assert compute_status(matching_record, config) is DeploymentStatus.COMPLETED


def test_tracker_reports_in_progress_and_restores(config, matching_record):
    tracker = DeploymentStateTracker()

    with tracker.in_progress("TestDiamond", "localhost"):
        assert tracker.status(matching_record, config, "localhost") is DeploymentStatus.IN_PROGRESS
        assert tracker.status(matching_record, config, "sepolia") is DeploymentStatus.COMPLETED

    assert tracker.status(matching_record, config, "localhost") is DeploymentStatus.COMPLETED


def test_tracker_restores_state_after_failure(config):
    tracker = DeploymentStateTracker()

    with pytest.raises(RuntimeError):
        with tracker.in_progress("TestDiamond", "localhost"):
            raise RuntimeError("boom")

    assert not tracker.is_in_progress("TestDiamond", "localhost")
    assert tracker.status(None, config, "localhost") is DeploymentStatus.NOT_DEPLOYED


def test_tracker_rejects_concurrent_submission():
    tracker = DeploymentStateTracker()

    with tracker.in_progress("TestDiamond", "localhost"):
        with pytest.raises(DeploymentInProgressError):
            with tracker.in_progress("TestDiamond", "localhost"):
                pass

    assert not tracker.is_in_progress("TestDiamond", "localhost")
