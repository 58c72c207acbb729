"""
ECDSA / secp256k1 key management for abstractkit.

This module handles Ethereum-compatible ECDSA keys used for:
- EIP-1559 transaction signing
- Raw digest signing and EIP-191 personal_sign
- Signature recovery / verification against an expected address

Keys are stored in ~/.abstractkit/.env as PRIVATE_KEY (hex format), or as an
encrypted keystore JSON, or derived from a BIP-39 mnemonic.

Recovery ids: raw digest signatures use V in {0, 1}; EIP-191 message
signatures use the Ethereum 27/28 convention. ``recover_address`` accepts both.
"""

from __future__ import annotations

import hashlib
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv
from eth_account import Account
from eth_account.datastructures import SignedTransaction as _EthSignedTransaction
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from eth_utils import ValidationError

from ..errors import SignatureError
from ..utils import keccak256, to_bytes

# Default config directory
ABSTRACTKIT_DIR = Path.home() / ".abstractkit"
ABSTRACTKIT_ENV = ABSTRACTKIT_DIR / ".env"

# m/44'/60'/0'/0/{index}
ETH_DERIVATION_PATH = "m/44'/60'/0'/0/{index}"

SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class Wallet:
    """A signing key and its derived address."""

    account: LocalAccount

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def private_key_hex(self) -> str:
        """0x-prefixed hex private key."""
        return "0x" + bytes(self.account.key).hex()

    def __repr__(self) -> str:
        return f"Wallet(address={self.address!r})"

    # ---------------------------------------------------------------------
    # Construction
    # ---------------------------------------------------------------------

    @classmethod
    def generate(cls) -> "Wallet":
        return cls(Account.from_key("0x" + secrets.token_hex(32)))

    @classmethod
    def from_key(cls, private_key: str) -> "Wallet":
        """Create a wallet from a hex private key (0x prefix optional)."""
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        return cls(Account.from_key(private_key))

    @classmethod
    def from_mnemonic(
        cls, mnemonic: str, passphrase: str = "", index: int = 0
    ) -> "Wallet":
        """Derive the account at m/44'/60'/0'/0/{index} from a BIP-39 mnemonic."""
        Account.enable_unaudited_hdwallet_features()
        try:
            account = Account.from_mnemonic(
                mnemonic,
                passphrase=passphrase,
                account_path=ETH_DERIVATION_PATH.format(index=index),
            )
        except ValidationError as exc:
            raise ValueError(f"invalid mnemonic: {exc}") from exc
        return cls(account)

    @classmethod
    def create_with_mnemonic(
        cls, strength: int = 128, passphrase: str = ""
    ) -> tuple["Wallet", str]:
        """Generate a new mnemonic (128 bits = 12 words) and its first account."""
        if strength % 32 or not 128 <= strength <= 256:
            raise ValueError(f"strength must be a multiple of 32 in [128, 256], got {strength}")
        Account.enable_unaudited_hdwallet_features()
        account, mnemonic = Account.create_with_mnemonic(
            passphrase=passphrase,
            num_words=strength // 32 * 3,
            account_path=ETH_DERIVATION_PATH.format(index=0),
        )
        return cls(account), mnemonic

    @classmethod
    def from_keystore(cls, keystore: Union[str, dict[str, Any]], password: str) -> "Wallet":
        """Decrypt a keystore JSON (string or dict).

        Raises:
            ValueError: wrong password or corrupted keystore
        """
        key = Account.decrypt(keystore, password)
        return cls(Account.from_key(key))

    def to_keystore(self, password: str) -> dict[str, Any]:
        """Export as an encrypted (scrypt) keystore JSON dict."""
        return Account.encrypt(self.account.key, password)

    # ---------------------------------------------------------------------
    # Signing
    # ---------------------------------------------------------------------

    def sign_hash(self, digest: bytes) -> bytes:
        """Sign a 32-byte digest; returns ``R(32) | S(32) | V(1)`` with V in {0, 1}.

        Inputs that are not 32 bytes long are SHA-256 hashed first.
        """
        if len(digest) != 32:
            digest = hashlib.sha256(digest).digest()
        signature = keys.PrivateKey(bytes(self.account.key)).sign_msg_hash(digest)
        return signature.to_bytes()

    def sign_message(self, message: Union[str, bytes]) -> bytes:
        """Sign with the EIP-191 prefix; V follows the 27/28 convention."""
        if isinstance(message, str):
            signable = encode_defunct(text=message)
        else:
            signable = encode_defunct(primitive=message)
        return bytes(self.account.sign_message(signable).signature)

    def sign_transaction(self, tx: dict[str, Any]) -> _EthSignedTransaction:
        return self.account.sign_transaction(tx)


def eip191_digest(message: Union[str, bytes]) -> bytes:
    """The digest personal_sign actually signs."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    prefix = f"\x19Ethereum Signed Message:\n{len(message)}".encode("utf-8")
    return keccak256(prefix + message)


def recover_address(digest: bytes, signature: Union[str, bytes]) -> str:
    """
    Recover the signing address from a digest and a 65-byte signature.

    Args:
        digest: The original 32-byte hash that was signed
        signature: ``R | S | V`` with V in {0, 1} or {27, 28}

    Returns:
        0x-prefixed checksummed address

    Raises:
        SignatureError: malformed signature or digest
    """
    sig = bytearray(to_bytes(signature))
    if len(sig) != SIGNATURE_LENGTH:
        raise SignatureError(f"signature must be {SIGNATURE_LENGTH} bytes, got {len(sig)}")
    if len(digest) != 32:
        raise SignatureError(f"digest must be 32 bytes, got {len(digest)}")

    if sig[64] >= 27:
        sig[64] -= 27
    if sig[64] not in (0, 1):
        raise SignatureError(f"invalid recovery id: {sig[64]}")

    try:
        public_key = keys.Signature(signature_bytes=bytes(sig)).recover_public_key_from_msg_hash(digest)
    except (BadSignature, KeyValidationError) as exc:
        raise SignatureError(f"invalid signature: {exc}") from exc
    return public_key.to_checksum_address()


def verify_signature(digest: bytes, signature: Union[str, bytes], expected: str) -> bool:
    """Check that ``signature`` over ``digest`` was produced by ``expected``."""
    return recover_address(digest, signature).lower() == expected.lower()


# ---------------------------------------------------------------------------
# Local key storage
# ---------------------------------------------------------------------------


def generate_eoa() -> tuple[str, str]:
    """
    Generate a new ECDSA/secp256k1 keypair (EOA).

    Returns:
        Tuple of (private_key_hex, address)
    """
    wallet = Wallet.generate()
    return wallet.private_key_hex, wallet.address


def save_private_key(private_key: str, env_path: Optional[Path] = None) -> Path:
    """
    Save private key to .env file.

    Args:
        private_key: 0x-prefixed hex private key
        env_path: Path to .env file (default: ~/.abstractkit/.env)

    Returns:
        Path to the saved .env file
    """
    env_path = env_path or ABSTRACTKIT_ENV
    env_path.parent.mkdir(parents=True, exist_ok=True)

    # Read existing .env content or start fresh
    existing = {}
    if env_path.exists():
        for line in env_path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                k, v = line.split("=", 1)
                existing[k.strip()] = v.strip()

    existing["PRIVATE_KEY"] = private_key

    lines = [f"{k}={v}" for k, v in existing.items()]
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    # Set secure permissions on Unix
    if os.name != "nt":
        env_path.chmod(0o600)

    return env_path


def load_private_key(env_path: Optional[Path] = None) -> str:
    """
    Load private key from .env file or environment.

    Raises:
        ValueError: If PRIVATE_KEY is not set
    """
    env_path = env_path or ABSTRACTKIT_ENV

    if env_path.exists():
        load_dotenv(env_path, override=True)

    private_key = os.environ.get("PRIVATE_KEY")
    if not private_key:
        raise ValueError(
            f"PRIVATE_KEY not found. Set PRIVATE_KEY in the environment or in {env_path}"
        )

    if not private_key.startswith("0x"):
        private_key = "0x" + private_key

    return private_key


def get_wallet(private_key: Optional[str] = None) -> Wallet:
    """Wallet for ``private_key``, or for the stored key when omitted."""
    if private_key is None:
        private_key = load_private_key()
    return Wallet.from_key(private_key)


def get_address(private_key: Optional[str] = None) -> str:
    return get_wallet(private_key).address
