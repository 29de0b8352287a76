"""
ABI fragments of the EIP-2535 standard interfaces.
"""

# IDiamondLoupe
DIAMOND_LOUPE_ABI = [
    {
        "inputs": [],
        "name": "facets",
        "outputs": [
            {
                "components": [
                    {"name": "facetAddress", "type": "address"},
                    {"name": "functionSelectors", "type": "bytes4[]"},
                ],
                "name": "facets_",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_facet", "type": "address"}],
        "name": "facetFunctionSelectors",
        "outputs": [{"name": "facetFunctionSelectors_", "type": "bytes4[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "facetAddresses",
        "outputs": [{"name": "facetAddresses_", "type": "address[]"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "_functionSelector", "type": "bytes4"}],
        "name": "facetAddress",
        "outputs": [{"name": "facetAddress_", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# IDiamondCut
DIAMOND_CUT_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"name": "facetAddress", "type": "address"},
                    {"name": "action", "type": "uint8"},
                    {"name": "functionSelectors", "type": "bytes4[]"},
                ],
                "name": "_diamondCut",
                "type": "tuple[]",
            },
            {"name": "_init", "type": "address"},
            {"name": "_calldata", "type": "bytes"},
        ],
        "name": "diamondCut",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
