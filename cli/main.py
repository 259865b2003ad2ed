# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
import time
from decimal import Decimal
from .keystore import KeyStore
from protocol.types.voucher import ClaimVoucher
from protocol.types.admin import AdminRequest
from protocol.types.common import PoolKind
from protocol.config.params import DECIMALS, DENOM

DEFAULT_NODE = "http://localhost:8000"

def get_node_url(args):
    return args.node or os.environ.get("WEFI_NODE", DEFAULT_NODE)

def to_units(amount: str) -> int:
    return int(Decimal(amount) * 10**DECIMALS)

def fmt_units(units) -> str:
    return f"{Decimal(int(units)) / 10**DECIMALS} {DENOM}"

def load_priv(name: str) -> bytes:
    ks = KeyStore()
    try:
        return ks.private_key(name)
    except KeyError as e:
        print(f"Error: {e.args[0]}")
        sys.exit(1)

def get_domain(args):
    """(chain_id, ledger_address) from flags, falling back to the node's /status."""
    if args.chain_id and args.ledger:
        return args.chain_id, args.ledger
    status = get_json(get_node_url(args), "/status")
    return args.chain_id or status["chain_id"], args.ledger or status["ledger_address"]

def get_json(url, path):
    try:
        resp = requests.get(f"{url}{path}")
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def post_json(url, path, payload):
    try:
        resp = requests.post(f"{url}{path}", json=payload)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

# --- Keys Commands ---
def cmd_keys_add(args):
    ks = KeyStore()
    try:
        key = ks.create_key(args.name)
        print(f"Key '{args.name}' created.")
        print(f"Address: {key['address']}")
        print(f"Pubkey:  {key['public_key']}")
        print("Important: Private key saved unencrypted. Do not share!")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_import(args):
    ks = KeyStore()
    try:
        key = ks.import_key(args.name, args.private_key)
        print(f"Key '{args.name}' imported.")
        print(f"Address: {key['address']}")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_list(args):
    ks = KeyStore()
    keys = ks.list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")

def cmd_keys_show(args):
    ks = KeyStore()
    key = ks.get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    print(json.dumps({k: v for k, v in key.items() if k != 'private_key'}, indent=2))

# --- Voucher Commands ---
def cmd_voucher_sign(args):
    """Issues a claim voucher signed by the verifier key (off-chain)."""
    priv = load_priv(args.signer)
    chain_id, ledger_address = get_domain(args)

    try:
        voucher = ClaimVoucher(
            receiver=args.receiver,
            amount=to_units(args.amount),
            valid_until=args.valid_until or int(time.time()) + args.ttl,
            pool=PoolKind.parse(args.pool),
            nonce=args.nonce,
        )
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    signature = voucher.sign(priv, chain_id, ledger_address)
    out = voucher.model_dump(mode="json")
    out["pool"] = voucher.pool.label
    out["signature"] = signature
    out["claim_key"] = voucher.claim_key(chain_id, ledger_address)
    print(json.dumps(out, indent=2))

# --- Query Commands ---
def cmd_query_pools(args):
    data = get_json(get_node_url(args), "/pools")
    print(f"{'Pool':<10} {'Phase':<18} {'Cap':>28} {'Unlocked':>28} {'Distributed':>28}")
    print("-" * 116)
    for p in data["pools"]:
        print(f"{p['pool']:<10} {p['phase']:<18} {p['cap']:>28} {p['unlocked']:>28} {p['distributed']:>28}")

def cmd_query_pool(args):
    data = get_json(get_node_url(args), f"/pool/{args.pool}")
    print(json.dumps(data, indent=2))

def cmd_query_unlocked(args):
    data = get_json(get_node_url(args), f"/unlocked/{args.pool}")
    print(f"Unlocked ({data['pool']}): {fmt_units(data['unlocked'])}")

def cmd_query_migration(args):
    data = get_json(get_node_url(args), "/migration")
    print(json.dumps(data, indent=2))

def cmd_query_claim(args):
    data = get_json(get_node_url(args), f"/claim/{args.claim_key}")
    print(json.dumps(data, indent=2))

def cmd_query_claims(args):
    data = get_json(get_node_url(args), f"/claims/{args.receiver}")
    print(f"Receiver: {data['receiver']}")
    print(f"Total claimed: {fmt_units(data['total_claimed'])}")
    for c in data["claims"]:
        print(f"  {c['claim_key'][:16]}...  pool={c['pool']}  amount={fmt_units(c['amount'])}  at={c['timestamp']}")

# --- Claim Command ---
def cmd_claim(args):
    """Submits a signed voucher (JSON from 'voucher sign') to the node."""
    if args.voucher == "-":
        voucher = json.load(sys.stdin)
    else:
        with open(args.voucher, "r") as f:
            voucher = json.load(f)

    payload = {
        "pool": voucher["pool"],
        "amount": int(voucher["amount"]),
        "valid_until": int(voucher["valid_until"]),
        "receiver": voucher["receiver"],
        "signature": voucher["signature"],
        "nonce": int(voucher.get("nonce", 0)),
    }
    if args.claimant:
        payload["claimant"] = args.claimant

    res = post_json(get_node_url(args), "/claim", payload)
    print(f"Claimed {fmt_units(res['amount'])} from {res['pool']} pool")
    print(f"Claim key: {res['claim_key']}")

# --- Admin Commands ---
def send_admin(args, action, params):
    priv = load_priv(args.from_name)
    chain_id, ledger_address = get_domain(args)
    request = AdminRequest(action=action, params=params, timestamp=int(time.time()))
    request.sign(priv, chain_id, ledger_address)
    return post_json(get_node_url(args), f"/admin/{action}", request.model_dump())

def cmd_admin_start_migration(args):
    target = args.target_timestamp or int(time.time()) + args.delay
    res = send_admin(args, "start_migration", {"target_timestamp": target})
    print(f"Migration lock active at {res['lock_timestamp']}, sweep after {res['migration_timestamp']}")

def cmd_admin_sweep(args):
    res = send_admin(args, "sweep", {"destination": args.destination})
    print(f"Swept {fmt_units(res['amount'])} to {res['destination']}")
    for pool, amount in res["per_pool"].items():
        print(f"  {pool}: {fmt_units(amount)}")

def cmd_admin_pause(args):
    send_admin(args, "pause", {})
    print("Claims paused.")

def cmd_admin_unpause(args):
    send_admin(args, "unpause", {})
    print("Claims resumed.")

def _add_domain_args(p):
    p.add_argument("--chain-id", help="Chain id (default: from node status)")
    p.add_argument("--ledger", help="Ledger address (default: from node status)")

def main():
    parser = argparse.ArgumentParser(prog="wefi", description="WeFi Distribution Client CLI")
    parser.add_argument("--node", help=f"Node URL (default: {DEFAULT_NODE})")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # voucher
    p_voucher = subparsers.add_parser("voucher", help="Issue claim vouchers")
    sp_voucher = p_voucher.add_subparsers(dest="subcommand")

    pv_sign = sp_voucher.add_parser("sign", help="Sign a claim voucher with the verifier key")
    pv_sign.add_argument("pool", help="mining | referral")
    pv_sign.add_argument("receiver", help="Receiver address")
    pv_sign.add_argument("amount", help=f"Amount in {DENOM}")
    pv_sign.add_argument("--signer", required=True, help="Verifier key name")
    pv_sign.add_argument("--valid-until", type=int, default=None, help="Unix expiry (inclusive)")
    pv_sign.add_argument("--ttl", type=int, default=3600, help="Seconds until expiry (if no --valid-until)")
    pv_sign.add_argument("--nonce", type=int, default=0, help="Voucher nonce")
    _add_domain_args(pv_sign)

    # query
    p_query = subparsers.add_parser("query", help="Query distribution state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    sp_query.add_parser("pools", help="Show both pools")

    pq_pool = sp_query.add_parser("pool", help="Show one pool")
    pq_pool.add_argument("pool", help="mining | referral")

    pq_unl = sp_query.add_parser("unlocked", help="Unlocked amount of a pool")
    pq_unl.add_argument("pool", choices=["mining", "referral"])

    sp_query.add_parser("migration", help="Migration lock status")

    pq_claim = sp_query.add_parser("claim", help="Get claim record")
    pq_claim.add_argument("claim_key", help="Claim key (voucher digest hex)")

    pq_claims = sp_query.add_parser("claims", help="Claims of a receiver")
    pq_claims.add_argument("receiver", help="Receiver address")

    # claim
    p_claim = subparsers.add_parser("claim", help="Submit a signed voucher")
    p_claim.add_argument("voucher", help="Voucher JSON file ('-' for stdin)")
    p_claim.add_argument("--claimant", help="Relayer address recorded with the claim")

    # admin
    p_admin = subparsers.add_parser("admin", help="Owner operations")
    sp_admin = p_admin.add_subparsers(dest="subcommand")

    pa_mig = sp_admin.add_parser("start-migration", help="Freeze unlocking ahead of a migration")
    pa_mig.add_argument("--target-timestamp", type=int, default=None, help="Unix time after which sweep is allowed")
    pa_mig.add_argument("--delay", type=int, default=7 * 86400, help="Seconds from now (if no timestamp)")

    pa_sweep = sp_admin.add_parser("sweep", help="Move unlocked-but-unclaimed tokens out")
    pa_sweep.add_argument("destination", help="Destination address")

    pa_pause = sp_admin.add_parser("pause", help="Pause claims")
    pa_unpause = sp_admin.add_parser("unpause", help="Resume claims")

    for p in (pa_mig, pa_sweep, pa_pause, pa_unpause):
        p.add_argument("--from", dest="from_name", required=True, help="Owner key name")
        _add_domain_args(p)

    args = parser.parse_args()

    if args.command == "keys":
        if args.subcommand == "add": cmd_keys_add(args)
        elif args.subcommand == "import": cmd_keys_import(args)
        elif args.subcommand == "list": cmd_keys_list(args)
        elif args.subcommand == "show": cmd_keys_show(args)
        else: p_keys.print_help()

    elif args.command == "voucher":
        if args.subcommand == "sign": cmd_voucher_sign(args)
        else: p_voucher.print_help()

    elif args.command == "query":
        if args.subcommand == "pools": cmd_query_pools(args)
        elif args.subcommand == "pool": cmd_query_pool(args)
        elif args.subcommand == "unlocked": cmd_query_unlocked(args)
        elif args.subcommand == "migration": cmd_query_migration(args)
        elif args.subcommand == "claim": cmd_query_claim(args)
        elif args.subcommand == "claims": cmd_query_claims(args)
        else: p_query.print_help()

    elif args.command == "claim":
        cmd_claim(args)

    elif args.command == "admin":
        if args.subcommand == "start-migration": cmd_admin_start_migration(args)
        elif args.subcommand == "sweep": cmd_admin_sweep(args)
        elif args.subcommand == "pause": cmd_admin_pause(args)
        elif args.subcommand == "unpause": cmd_admin_unpause(args)
        else: p_admin.print_help()

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
