"""
Target configuration loader.

Reads a diamond's deployment configuration file and attaches the compiled
artifacts (ABI and bytecode) of the proxy and of every facet.

Configuration file layout (`<diamonds_path>/<Name>/<name>.config.json`):

    {
        "protocolVersion": 2,
        "cutFacetName": "DiamondCutFacet",
        "facets": {
            "DiamondCutFacet": {"priority": 10},
            "TokenFacet": {"priority": 100, "version": 1, "excludeSelectors": ["0x01ffc9a7"]}
        }
    }

Facets are processed in file order.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from diamond_deployer.core.config import settings
from diamond_deployer.core.exceptions import ConfigurationError, DiamondNotFoundError
from diamond_deployer.core.logging import get_logger
from diamond_deployer.domain.models.facet import DiamondConfig

logger = get_logger(__name__)

# Config file key -> model field
_FACET_KEYS = {
    "priority": "priority",
    "version": "version",
    "selectors": "selectors",
    "excludeSelectors": "exclude_selectors",
    "constructorArgs": "constructor_args",
}


def config_path(diamond_name: str, diamonds_path: Optional[str] = None) -> Path:
    base = Path(diamonds_path or settings.DIAMONDS_PATH)
    return base / diamond_name / f"{diamond_name.lower()}.config.json"


def find_artifact(contract_name: str, artifacts_path: Optional[str] = None) -> Optional[Path]:
    """
    Locate the compiled artifact of a contract.

    Args:
        contract_name: Contract name, e.g. "DiamondLoupeFacet"
        artifacts_path: Root of the compiler output tree

    Returns:
        Path of `<contract_name>.json` (debug files skipped), or None
    """
    root = Path(artifacts_path or settings.ARTIFACTS_PATH)
    if not root.is_dir():
        return None
    for candidate in sorted(root.rglob(f"{contract_name}.json")):
        if candidate.name.endswith(".dbg.json"):
            continue
        return candidate
    return None


def load_artifact(contract_name: str, artifacts_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Return the artifact's `abi` and `bytecode`, or None when not compiled."""
    path = find_artifact(contract_name, artifacts_path)
    if path is None:
        return None

    with open(path, "r") as f:
        artifact = json.load(f)

    bytecode = artifact.get("bytecode")
    if isinstance(bytecode, dict):
        # solc standard JSON output nests the object
        bytecode = bytecode.get("object")
    if bytecode and not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return {"abi": artifact.get("abi", []), "bytecode": bytecode}


def parse_diamond_config(
    diamond_name: str,
    raw: Dict[str, Any],
    artifacts_path: Optional[str] = None,
) -> DiamondConfig:
    """
    Build a DiamondConfig from a parsed configuration document.

    Every problem found is collected before raising.

    Raises:
        ConfigurationError: listing each invalid field and missing artifact
    """
    problems: List[str] = []

    facets_raw = raw.get("facets") or {}
    if not isinstance(facets_raw, dict):
        raise ConfigurationError(["'facets' must be an object keyed by facet name"])

    facets = []
    for name, options in facets_raw.items():
        options = options or {}
        facet: Dict[str, Any] = {"name": name}
        for key, field in _FACET_KEYS.items():
            if key in options:
                facet[field] = options[key]

        artifact = load_artifact(name, artifacts_path)
        if artifact is not None:
            facet["abi"] = artifact["abi"]
            facet["bytecode"] = artifact["bytecode"]
        elif not options.get("selectors"):
            problems.append(f"facets.{name}: no compiled artifact and no explicit selectors")
        facets.append(facet)

    document: Dict[str, Any] = {
        "diamond_name": diamond_name,
        "protocol_version": raw.get("protocolVersion", 0),
        "facets": facets,
        "init_calldata": raw.get("initCalldata", "0x"),
    }
    if raw.get("cutFacetName"):
        document["cut_facet_name"] = raw["cutFacetName"]
    else:
        document["cut_facet_name"] = settings.CUT_FACET_NAME
    if raw.get("initAddress"):
        document["init_address"] = raw["initAddress"]
    if raw.get("constructorArgs") is not None:
        document["diamond_constructor_args"] = raw["constructorArgs"]

    diamond_artifact = load_artifact(diamond_name, artifacts_path)
    if diamond_artifact is not None:
        document["diamond_abi"] = diamond_artifact["abi"]
        document["diamond_bytecode"] = diamond_artifact["bytecode"]

    try:
        config = DiamondConfig(**document)
    except ValidationError as e:
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            problems.append(f"{location}: {error['msg']}")
        raise ConfigurationError(problems, details={"diamond_name": diamond_name})

    if problems:
        raise ConfigurationError(problems, details={"diamond_name": diamond_name})
    return config


def load_diamond_config(
    diamond_name: str,
    diamonds_path: Optional[str] = None,
    artifacts_path: Optional[str] = None,
) -> DiamondConfig:
    """
    Load the target configuration of a diamond from disk.

    Args:
        diamond_name: Diamond name
        diamonds_path: Directory holding per-diamond configuration folders
        artifacts_path: Root of the compiler output tree

    Returns:
        Parsed target configuration

    Raises:
        DiamondNotFoundError: no configuration file for the diamond
        ConfigurationError: malformed configuration
    """
    path = config_path(diamond_name, diamonds_path)
    if not path.is_file():
        raise DiamondNotFoundError(diamond_name)

    try:
        with open(path, "r") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError([f"{path}: invalid JSON ({e})"])

    config = parse_diamond_config(diamond_name, raw, artifacts_path)
    logger.info(
        f"Loaded configuration for {diamond_name}",
        path=str(path),
        facets=len(config.facets),
        protocol_version=config.protocol_version,
    )
    return config
