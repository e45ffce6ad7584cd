"""Plugin trust checks - trusted-source allow-list and package signature verification."""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import load_pem_public_key

logger = logging.getLogger(__name__)

SIGNATURE_FILE = "signature.json"
INSTALL_RECORD_FILE = ".install.json"
_DIGEST_EXCLUDES = {SIGNATURE_FILE, INSTALL_RECORD_FILE}
_HASH_ALGORITHMS = {
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}


class SignatureStatus(str, Enum):
    VERIFIED = "verified"
    UNSIGNED = "unsigned"
    UNTRUSTED_KEY = "untrusted_key"
    INVALID = "invalid"


@dataclass
class SignatureCheck:
    """Outcome of a package signature verification."""

    status: SignatureStatus
    message: str
    key_id: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.status == SignatureStatus.VERIFIED


def compute_package_digest(package_dir: Path) -> str:
    """Canonical SHA-256 digest of a package tree.

    Each file contributes ``<relative path>\\0<sha256>\\n`` in sorted path order.
    The signature file, the install record and bytecode caches are excluded.
    """
    outer = hashlib.sha256()
    for path in sorted(p for p in package_dir.rglob("*") if p.is_file()):
        relative = path.relative_to(package_dir)
        if relative.name in _DIGEST_EXCLUDES or "__pycache__" in relative.parts:
            continue
        file_hash = hashlib.sha256(path.read_bytes()).hexdigest()
        outer.update(f"{relative.as_posix()}\0{file_hash}\n".encode("utf-8"))
    return outer.hexdigest()


def calculate_key_id(public_key) -> str:
    """Short stable identifier of a public key."""
    public_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(public_bytes).hexdigest()[:16]


def sign_package(package_dir: Path, private_key, algorithm: str = "SHA256") -> Dict[str, str]:
    """Write signature.json for a package with an RSA private key.

    Returns:
        The signature document written
    """
    hash_algo = _HASH_ALGORITHMS[algorithm]()
    digest = compute_package_digest(package_dir)
    signature = private_key.sign(
        digest.encode("utf-8"),
        padding.PSS(mgf=padding.MGF1(hash_algo), salt_length=padding.PSS.MAX_LENGTH),
        hash_algo,
    )
    document = {
        "algorithm": algorithm,
        "key_id": calculate_key_id(private_key.public_key()),
        "signature": signature.hex(),
        "signed_at": datetime.now(timezone.utc).isoformat(),
    }
    with open(package_dir / SIGNATURE_FILE, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)
    return document


class PluginTrustVerifier:
    """Trusted-source matching and RSA-PSS signature verification."""

    def __init__(self, trusted_sources: Iterable[str], trusted_keys_dir: Optional[Path] = None):
        self.trusted_sources: List[str] = list(trusted_sources)
        self.trusted_keys_dir = trusted_keys_dir
        self.trusted_keys: Dict[str, object] = {}
        self._load_trusted_keys()

    def _load_trusted_keys(self) -> None:
        if self.trusted_keys_dir is None:
            return
        if not self.trusted_keys_dir.exists():
            logger.warning(f"Trusted keys directory not found: {self.trusted_keys_dir}")
            return

        for key_file in sorted(self.trusted_keys_dir.glob("*.pem")):
            try:
                with open(key_file, "rb") as f:
                    public_key = load_pem_public_key(f.read())
            except (ValueError, OSError) as e:
                logger.error(f"Failed to load key from {key_file}: {e}")
                continue
            self.add_trusted_key(public_key, source=key_file.name)

    def add_trusted_key(self, public_key, source: str = "memory") -> str:
        key_id = calculate_key_id(public_key)
        self.trusted_keys[key_id] = public_key
        logger.info(f"Loaded trusted key: {key_id} from {source}")
        return key_id

    def is_trusted_source(self, package_spec: str) -> bool:
        """True if the package spec contains one of the allow-listed sources."""
        return any(source in package_spec for source in self.trusted_sources)

    def verify_signature(self, package_dir: Path) -> SignatureCheck:
        """Verify signature.json of a package against the trusted keys."""
        signature_file = package_dir / SIGNATURE_FILE
        if not signature_file.exists():
            return SignatureCheck(SignatureStatus.UNSIGNED, "Package not signed")

        try:
            with open(signature_file, "r", encoding="utf-8") as f:
                document = json.load(f)
            algorithm = document.get("algorithm", "SHA256")
            key_id = document["key_id"]
            signature_bytes = bytes.fromhex(document["signature"])
        except (json.JSONDecodeError, KeyError, ValueError, OSError) as e:
            return SignatureCheck(SignatureStatus.INVALID, f"Malformed signature file: {e}")

        hash_cls = _HASH_ALGORITHMS.get(algorithm)
        if hash_cls is None:
            return SignatureCheck(SignatureStatus.INVALID, f"Unsupported hash algorithm: {algorithm}", key_id)

        public_key = self.trusted_keys.get(key_id)
        if public_key is None:
            return SignatureCheck(SignatureStatus.UNTRUSTED_KEY, f"Signer key not trusted: {key_id}", key_id)

        digest = compute_package_digest(package_dir)
        hash_algo = hash_cls()
        try:
            public_key.verify(
                signature_bytes,
                digest.encode("utf-8"),
                padding.PSS(mgf=padding.MGF1(hash_algo), salt_length=padding.PSS.MAX_LENGTH),
                hash_algo,
            )
        except InvalidSignature:
            return SignatureCheck(
                SignatureStatus.INVALID,
                "Invalid signature - content may have been tampered with",
                key_id,
            )

        return SignatureCheck(SignatureStatus.VERIFIED, "Signature verified successfully", key_id)
