import argparse
import os
import sys
import json
import time
import logging
from protocol.crypto.keys import generate_private_key, public_key_from_private
from protocol.crypto.addresses import address_from_pubkey
from protocol.config.params import NETWORKS, CURRENT_NETWORK
from protocol.config.economic_model import CONFIGS
from ..storage.db import StorageDB
from ..core.accounts import AccountState
from ..core.access import OwnerGate
from ..core.ledger import DistributionLedger
from ..core.errors import ConfigurationError
from ..rpc import api

logger = logging.getLogger(__name__)

DEPLOYMENT_FILE = "deployment.json"

def _load_or_create_key(path: str, prefix: str, label: str) -> str:
    """Returns the address for the key at `path`, creating the key if needed."""
    if not os.path.exists(path):
        priv = generate_private_key()
        with open(path, "w") as f:
            f.write(priv.hex())
        os.chmod(path, 0o600)
        print(f"Generated new {label} key.")
    else:
        print(f"{label.capitalize()} key already exists at {path}")
        with open(path, "r") as f:
            priv = bytes.fromhex(f.read().strip())

    addr = address_from_pubkey(public_key_from_private(priv), prefix=prefix)
    print(f"Address: {addr}")
    return addr

def cmd_init(args):
    """Initialize node: verifier and owner keys, deployment parameters."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)
    network = NETWORKS[args.network]

    deployment_path = os.path.join(data_dir, DEPLOYMENT_FILE)
    if os.path.exists(deployment_path):
        print(f"Deployment already exists at {deployment_path}")
        return

    # The verifier key signs claim vouchers off-chain; the owner key signs admin requests
    verifier_addr = _load_or_create_key(os.path.join(data_dir, "verifier_key.hex"),
                                        network.bech32_prefix_acc, "verifier")
    owner_addr = _load_or_create_key(os.path.join(data_dir, "owner_key.hex"),
                                     network.bech32_prefix_acc, "owner")

    launch_timestamp = args.launch_timestamp or int(time.time()) + args.launch_delay
    deployment = {
        "network": network.network_id,
        "chain_id": network.chain_id,
        "ledger_address": network.distribution_address,
        "verifier_address": verifier_addr,
        "owner_address": owner_addr,
        "launch_timestamp": launch_timestamp,
    }
    with open(deployment_path, "w") as f:
        json.dump(deployment, f, indent=2)

    print(f"\nLedger address: {network.distribution_address}")
    print(f"Launch at: {launch_timestamp}")
    print(f"Node initialized in {data_dir}")

def build_ledger(data_dir: str) -> DistributionLedger:
    """Creates the ledger from a datadir; funds the ledger address on first start."""
    deployment_path = os.path.join(data_dir, DEPLOYMENT_FILE)
    if not os.path.exists(deployment_path):
        raise ConfigurationError(f"No {DEPLOYMENT_FILE} in {data_dir}, run 'init' first")

    with open(deployment_path, "r") as f:
        deployment = json.load(f)

    network = NETWORKS[deployment["network"]]
    config = CONFIGS[deployment["network"]]

    db = StorageDB(os.path.join(data_dir, "ledger.db"))
    token = AccountState(db)
    gate = OwnerGate(deployment["owner_address"], db=db)

    ledger = DistributionLedger(
        config=config,
        token=token,
        access=gate,
        verifier_address=deployment["verifier_address"],
        launch_timestamp=deployment["launch_timestamp"],
        network=network,
        db=db,
    )

    if token.total_minted == 0:
        token.mint(ledger.address, config.total_allocation())
        logger.info(f"Funded ledger {ledger.address} with {config.total_allocation()}")

    return ledger

def cmd_run(args):
    try:
        ledger = build_ledger(args.datadir)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Starting WeFi distribution node...")
    print(f"Ledger: {ledger.address}")
    print(f"RPC: {args.host}:{args.port}")

    try:
        api.start_rpc_server(ledger, ledger.network, host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass
    finally:
        if ledger.db is not None:
            ledger.db.close()

def main():
    parser = argparse.ArgumentParser(description="WeFi Distribution Node CLI")
    parser.add_argument("--datadir", default="./.wefi", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    init_parser = subparsers.add_parser("init", help="Initialize node configuration")
    init_parser.add_argument("--network", default=CURRENT_NETWORK.network_id, choices=sorted(NETWORKS), help="Network")
    init_parser.add_argument("--launch-timestamp", type=int, default=None, help="Unix launch time")
    init_parser.add_argument("--launch-delay", type=int, default=60, help="Seconds from now until launch (if no timestamp)")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=CURRENT_NETWORK.rpc_port, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
