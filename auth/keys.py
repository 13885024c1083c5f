"""
auth/keys.py -- RSA signing keypair loaded once at startup.

The private key signs tokens, the public key verifies them. Both are read
from PEM files named in Settings and checked before the app becomes ready:

  - both files must exist and be readable
  - both must parse as RSA keys (PKCS#8 / traditional private, SPKI public)
  - the public key must be the public half of the private key
  - the modulus must be at least 2048 bits

Any failure raises KeyMaterialError. The FastAPI lifespan does not catch it,
so a misconfigured deployment never starts serving requests.

KeyMaterial is frozen and only read after construction, so it is shared
across request threads without locking.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from auth.errors import KeyMaterialError

logger = logging.getLogger("resumeagent.auth.keys")

MIN_KEY_SIZE = 2048


@dataclass(frozen=True)
class KeyMaterial:
    """PEM-encoded RSA keypair. private_pem is kept out of repr."""

    private_pem: str = field(repr=False)
    public_pem: str
    key_size: int


def _read_pem(path: str, label: str) -> bytes:
    if not path:
        raise KeyMaterialError(f"JWT {label} key path is not configured.")
    key_path = Path(path).expanduser()
    if not key_path.is_file():
        raise KeyMaterialError(f"JWT {label} key file not found: {key_path}")
    try:
        return key_path.read_bytes()
    except OSError as exc:
        raise KeyMaterialError(f"JWT {label} key file is unreadable: {key_path}") from exc


def parse_key_material(private_pem: bytes, public_pem: bytes) -> KeyMaterial:
    """Validate a PEM keypair and return it as KeyMaterial."""
    try:
        private_key = serialization.load_pem_private_key(private_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyMaterialError("JWT private key is malformed or encrypted.") from exc
    try:
        public_key = serialization.load_pem_public_key(public_pem)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyMaterialError("JWT public key is malformed.") from exc

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyMaterialError("JWT private key must be an RSA key.")
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyMaterialError("JWT public key must be an RSA key.")
    if private_key.public_key().public_numbers() != public_key.public_numbers():
        raise KeyMaterialError("JWT public key does not match the private key.")
    if private_key.key_size < MIN_KEY_SIZE:
        raise KeyMaterialError(f"JWT keys must be at least {MIN_KEY_SIZE} bits.")

    return KeyMaterial(
        private_pem=private_pem.decode("ascii"),
        public_pem=public_pem.decode("ascii"),
        key_size=private_key.key_size,
    )


def load_key_material(private_key_path: str, public_key_path: str) -> KeyMaterial:
    """Read and validate the keypair from disk. Raises KeyMaterialError."""
    keys = parse_key_material(
        _read_pem(private_key_path, "private"),
        _read_pem(public_key_path, "public"),
    )
    logger.info("JWT RSA keys loaded (%d bits)", keys.key_size)
    return keys


def generate_key_material(key_size: int = MIN_KEY_SIZE) -> KeyMaterial:
    """Create a fresh RSA keypair in memory. Used by the CLI and tests."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return parse_key_material(private_pem, public_pem)


def write_key_material(keys: KeyMaterial, directory: Path) -> tuple[Path, Path]:
    """Write keys as private.pem / public.pem under directory.

    The private key file is created with mode 0600.
    """
    directory.mkdir(parents=True, exist_ok=True)
    private_path = directory / "private.pem"
    public_path = directory / "public.pem"
    private_path.write_text(keys.private_pem, encoding="ascii")
    private_path.chmod(0o600)
    public_path.write_text(keys.public_pem, encoding="ascii")
    return private_path, public_path
