"""Configuration constants for forge-deployments library."""

# Project-local state directory holding the registry documents
STATE_DIR_NAME = ".treb"

DEPLOYMENTS_FILE = "deployments.json"
TRANSACTIONS_FILE = "transactions.json"
SAFE_TRANSACTIONS_FILE = "safe-txs.json"
SOLIDITY_REGISTRY_FILE = "registry.json"

DEFAULT_NAMESPACE = "default"

# Foundry cheat-code contract (address(uint160(uint256(keccak256("hevm cheat code")))))
CHEATCODE_ADDRESS = "0x7109709ECfa91a80626fF3989D68f67F5b1DD12D"

# prank(address)
PRANK_SELECTOR = "ca669fa7"

# Safe execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)
SAFE_EXEC_TRANSACTION_SELECTOR = "6a761202"

# CreateX factory, same address on every supported chain
CREATEX_FACTORY_ADDRESS = "0xba5Ed099633D3B313e4D5F7bdc1305d3c28ba5Ed"

DEFAULT_CREATE_STRATEGY = "CREATE2"

# Network configuration based on ethereum-lists/chains
# EIP-3770 chain short names for environment variables
NETWORK_CONFIG = {
    "anvil": {
        "chain_id": 31337,
        "chain_name": "Anvil",
        "short_name": "anvil",
        "default_rpc_env": "ANVIL_RPC_URL",
    },
    "mainnet": {
        "chain_id": 1,
        "chain_name": "Ethereum Mainnet",
        "short_name": "eth",  # EIP-3770
        "default_rpc_env": "ETH_RPC_URL",
    },
    "sepolia": {
        "chain_id": 11155111,
        "chain_name": "Sepolia",
        "short_name": "sep",  # EIP-3770
        "default_rpc_env": "SEP_RPC_URL",
    },
    "gnosis": {
        "chain_id": 100,
        "chain_name": "Gnosis Chain",
        "short_name": "gno",  # EIP-3770
        "default_rpc_env": "GNO_RPC_URL",
    },
}

RPC_TIMEOUT_SECONDS = 30
