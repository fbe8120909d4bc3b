"""
Credential vault for follower signing keys.

Keys are encrypted with AES-256-GCM under a key derived from a per-follower
secret with argon2id. The envelope is a dot separated text token:

    v1.<time_cost>.<memory_cost>.<parallelism>.<salt>.<nonce>.<ciphertext>

with base64url (unpadded) binary parts. The per-follower secret is not
stored: SecretKeeper derives it from a master secret held by the process.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Union

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_account import Account
from eth_account.signers.local import LocalAccount

from .errors import CredentialError
from .types import CredentialRecord, FollowerProfile

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = "v1"
SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
TAG_BYTES = 16

# Upper bound accepted from an envelope, so a tampered token cannot ask for
# an arbitrarily large KDF allocation.
MAX_MEMORY_COST = 1 << 21


@dataclass(frozen=True)
class KdfParams:
    """argon2id cost parameters"""
    time_cost: int = 3
    memory_cost: int = 65536  # KiB
    parallelism: int = 1


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _normalize_key(signing_key: Union[str, bytes]) -> bytes:
    if isinstance(signing_key, str):
        text = signing_key[2:] if signing_key.startswith("0x") else signing_key
        try:
            signing_key = bytes.fromhex(text)
        except ValueError as e:
            raise CredentialError("Signing key is not valid hex") from e
    if len(signing_key) != KEY_BYTES:
        raise CredentialError(f"Signing key must be {KEY_BYTES} bytes")
    return bytes(signing_key)


class CredentialVault:
    """
    Encrypts and decrypts follower signing keys.

    Stateless apart from the KDF cost used for new envelopes; decryption
    always uses the cost recorded in the envelope.
    """

    def __init__(self, kdf: KdfParams = KdfParams()):
        self.kdf = kdf

    def _derive_key(self, secret: str, salt: bytes, kdf: KdfParams) -> bytes:
        if not secret:
            raise CredentialError("Empty secret")
        return hash_secret_raw(
            secret=secret.encode("utf-8"),
            salt=salt,
            time_cost=kdf.time_cost,
            memory_cost=kdf.memory_cost,
            parallelism=kdf.parallelism,
            hash_len=KEY_BYTES,
            type=Type.ID,
        )

    def encrypt(self, signing_key: Union[str, bytes], secret: str) -> str:
        """
        Encrypt a signing key under a secret.

        Args:
            signing_key: 32 byte private key, raw or hex encoded
            secret: Per-follower secret (never the key itself)

        Returns:
            Envelope token safe to persist
        """
        key_bytes = _normalize_key(signing_key)
        salt = secrets.token_bytes(SALT_BYTES)
        nonce = secrets.token_bytes(NONCE_BYTES)
        aes_key = self._derive_key(secret, salt, self.kdf)
        ciphertext = AESGCM(aes_key).encrypt(nonce, key_bytes, ENVELOPE_VERSION.encode())

        return ".".join([
            ENVELOPE_VERSION,
            str(self.kdf.time_cost),
            str(self.kdf.memory_cost),
            str(self.kdf.parallelism),
            _b64encode(salt),
            _b64encode(nonce),
            _b64encode(ciphertext),
        ])

    def decrypt(self, encrypted_key: str, secret: str) -> bytes:
        """
        Recover a signing key.

        Raises:
            CredentialError: malformed envelope, wrong secret or tampered data
        """
        parts = encrypted_key.split(".") if isinstance(encrypted_key, str) else []
        if len(parts) != 7 or parts[0] != ENVELOPE_VERSION:
            raise CredentialError("Malformed credential envelope")

        try:
            kdf = KdfParams(
                time_cost=int(parts[1]),
                memory_cost=int(parts[2]),
                parallelism=int(parts[3]),
            )
            salt = _b64decode(parts[4])
            nonce = _b64decode(parts[5])
            ciphertext = _b64decode(parts[6])
        except (ValueError, binascii.Error) as e:
            raise CredentialError("Malformed credential envelope") from e

        if (len(salt) != SALT_BYTES or len(nonce) != NONCE_BYTES
                or len(ciphertext) != KEY_BYTES + TAG_BYTES):
            raise CredentialError("Credential envelope has invalid lengths")
        if not (1 <= kdf.time_cost <= 16 and 8 * kdf.parallelism <= kdf.memory_cost <= MAX_MEMORY_COST
                and 1 <= kdf.parallelism <= 16):
            raise CredentialError("Credential envelope has invalid KDF parameters")

        aes_key = self._derive_key(secret, salt, kdf)
        try:
            return AESGCM(aes_key).decrypt(nonce, ciphertext, ENVELOPE_VERSION.encode())
        except InvalidTag as e:
            raise CredentialError("Wrong secret or corrupted ciphertext") from e

    def load_account(self, profile: FollowerProfile) -> LocalAccount:
        """
        Decrypt a follower's key into a signer for a single execution.

        The returned account must not be cached by the caller.
        """
        buffer = bytearray(self.decrypt(profile.encrypted_key, profile.secret))
        try:
            account = Account.from_key(bytes(buffer))
        except ValueError as e:
            raise CredentialError("Decrypted data is not a valid signing key") from e
        finally:
            buffer[:] = bytes(len(buffer))

        if account.address.lower() != profile.wallet_address.lower():
            raise CredentialError("Decrypted key does not match the follower wallet")
        return account


class SecretKeeper:
    """
    Derives per-follower secrets from a master secret.

    The master secret comes from the environment and is never written next
    to the encrypted keys, so store access alone does not unlock a key.
    """

    def __init__(self, master_secret: str):
        if not master_secret:
            raise ValueError("Master secret must be provided")
        self._master = master_secret.encode("utf-8")

    def secret_for(self, follower_id: str) -> str:
        return hmac.new(self._master, str(follower_id).encode("utf-8"), hashlib.sha256).hexdigest()

    def __repr__(self) -> str:
        return "SecretKeeper(<hidden>)"


def provision_wallet(follower_id: str, vault: CredentialVault, keeper: SecretKeeper) -> CredentialRecord:
    """Create a fresh wallet for a follower and return its encrypted record."""
    account = Account.create()
    encrypted = vault.encrypt(bytes(account.key), keeper.secret_for(follower_id))
    logger.info(f"Provisioned wallet {account.address} for follower {follower_id}")
    return CredentialRecord(
        follower_id=str(follower_id),
        wallet_address=account.address,
        encrypted_key=encrypted,
    )
