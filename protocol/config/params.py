# MIT License
# Copyright (c) 2025 Hashborn

import os
from typing import Dict
from ..crypto.addresses import module_address

# Global Constants
DENOM = "wefi"
DECIMALS = 18

# Domain tag mixed into every voucher signature
PROTOCOL_NAME = "WeFiDistribution"
PROTOCOL_VERSION = "1"

# Ledger module name (keyless address that holds the pre-funded allocation)
DISTRIBUTION_MODULE = "distribution"

class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 chain_id: str,
                 bech32_prefix_acc: str = "wefi",
                 rpc_port: int = 8000,
                 # Admin requests older than this are rejected by the RPC
                 admin_request_ttl_sec: int = 300,
                 version: int = 1):
        self.network_id = network_id
        self.chain_id = chain_id
        self.bech32_prefix_acc = bech32_prefix_acc
        self.rpc_port = rpc_port
        self.admin_request_ttl_sec = admin_request_ttl_sec
        self.version = version

    @property
    def distribution_address(self) -> str:
        """Address of the distribution ledger on this network."""
        return module_address(DISTRIBUTION_MODULE, prefix=self.bech32_prefix_acc)

NETWORKS: Dict[str, NetworkConfig] = {
    "devnet": NetworkConfig(
        network_id="devnet",
        chain_id="wefi-devnet-1",
        rpc_port=8000,
    ),
    "testnet": NetworkConfig(
        network_id="testnet",
        chain_id="wefi-testnet-1",
        rpc_port=8000,
    ),
    "mainnet": NetworkConfig(
        network_id="mainnet",
        chain_id="wefi-mainnet-1",
        rpc_port=8000,
        admin_request_ttl_sec=120,
    ),
}

# Default to devnet, overridable via WEFI_NETWORK
CURRENT_NETWORK = NETWORKS[os.environ.get("WEFI_NETWORK", "devnet")]
