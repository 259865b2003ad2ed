import os
import json
import time
from typing import List, Dict, Optional
from protocol.crypto.keys import generate_private_key, public_key_from_private
from protocol.crypto.addresses import address_from_pubkey
from protocol.config.params import CURRENT_NETWORK

KEYSTORE_DIR = os.path.expanduser(os.environ.get("WEFI_KEYSTORE", "~/.wefi/keys"))

class KeyStore:
    """Named secp256k1 keys for voucher signers, owners and claim receivers."""

    def __init__(self, root_dir: str = KEYSTORE_DIR, prefix: str = CURRENT_NETWORK.bech32_prefix_acc):
        self.root_dir = root_dir
        self.prefix = prefix
        os.makedirs(self.root_dir, exist_ok=True)

    def _key_data(self, name: str, priv: bytes) -> Dict[str, str]:
        pub = public_key_from_private(priv)
        return {
            "name": name,
            "address": address_from_pubkey(pub, prefix=self.prefix),
            "public_key": pub.hex(),
            "private_key": priv.hex(),
            "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        }

    def create_key(self, name: str) -> Dict[str, str]:
        """Generates and saves a new key."""
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        key_data = self._key_data(name, generate_private_key())
        self._save_key_file(name, key_data)
        return key_data

    def import_key(self, name: str, private_key_hex: str) -> Dict[str, str]:
        """Imports an existing private key (hex, optional 0x)."""
        if self.get_key(name):
            raise ValueError(f"Key '{name}' already exists")

        if private_key_hex.startswith("0x"):
            private_key_hex = private_key_hex[2:]
        try:
            priv = bytes.fromhex(private_key_hex)
        except ValueError:
            raise ValueError("Invalid hex string")
        if len(priv) != 32:
            raise ValueError("Invalid private key length")

        key_data = self._key_data(name, priv)
        self._save_key_file(name, key_data)
        return key_data

    def get_key(self, name: str) -> Optional[Dict[str, str]]:
        path = self._path(name)
        if not os.path.exists(path):
            return None

        with open(path, "r") as f:
            return json.load(f)

    def private_key(self, name: str) -> bytes:
        """Raw private key bytes for signing; raises KeyError if missing."""
        key = self.get_key(name)
        if not key:
            raise KeyError(f"Key '{name}' not found")
        return bytes.fromhex(key["private_key"])

    def list_keys(self) -> List[Dict[str, str]]:
        """Lists all available keys (without private info)."""
        keys = []
        for filename in sorted(os.listdir(self.root_dir)):
            if filename.endswith(".json"):
                data = self.get_key(filename[:-5])
                if data:
                    keys.append({
                        "name": data["name"],
                        "address": data["address"],
                        "public_key": data["public_key"]
                    })
        return keys

    def delete_key(self, name: str) -> bool:
        path = self._path(name)
        if os.path.exists(path):
            os.remove(path)
            return True
        return False

    def _path(self, name: str) -> str:
        return os.path.join(self.root_dir, f"{name}.json")

    def _save_key_file(self, name: str, data: Dict[str, str]):
        path = self._path(name)
        with open(path, "w") as f:
            json.dump(data, f, indent=2)
        os.chmod(path, 0o600)
