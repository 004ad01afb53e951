"""
Ethereum Wallet Authentication Utilities

This module handles the Ethereum-specific cryptographic operations for wallet authentication.
It implements the signature verification flow using EIP-191 personal messages (personal_sign).

Authentication Flow:
1. Backend generates a random nonce -> generate_nonce()
2. Backend wraps it in a human readable challenge -> build_challenge_message()
3. Frontend signs the exact challenge with the wallet (personal_sign)
4. Frontend sends: walletAddress, signature, message
5. Backend pulls the nonce back out of the message -> extract_nonce()
6. Backend verifies: verify_signature()
   - Recovers the signer address from (message, signature)
   - Checksums both recovered and claimed address (EIP-55)
   - Compares them exactly and returns the checksummed address

The signature verification uses:
- secp256k1 public key recovery (Ethereum's signature algorithm)
- eth_account / eth_utils for recovery and address normalization
"""

import re
import secrets
from datetime import datetime, timezone

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import decode_hex, is_address, to_checksum_address

from app.core.errors import AddressMismatch, InvalidSignature, ValidationError


NONCE_NUM_BYTES = 32  # 32 bytes = 64 hex characters
AUTH_METHOD_WALLET = "wallet"

# Signing clients reproduce this text byte for byte, do not reword it.
CHALLENGE_PREAMBLE = "Sign this message to authenticate with DilSe Matchify."

NONCE_PATTERN = re.compile(r"Nonce: ([a-f0-9]+)")

# personal_sign output: r (32) | s (32) | v (1), v in {27, 28}, low-s
SIGNATURE_NUM_BYTES = 65
PERSONAL_SIGN_V = (27, 28)
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """
    Generate a cryptographically secure random nonce for wallet authentication.

    Args:
        num_bytes: Number of random bytes to generate (default: 32 = 64 hex chars)

    Returns:
        Hex-encoded random string (e.g., "a1b2c3d4...")
    """
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. 2025-11-01T18:09:58.123Z"""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_challenge_message(nonce: str, issued_at: datetime) -> str:
    """The exact text the wallet is asked to sign."""
    return f"{CHALLENGE_PREAMBLE}\n\nNonce: {nonce}\nTimestamp: {iso_timestamp(issued_at)}"


def extract_nonce(message: str) -> str:
    """
    Pull the nonce token back out of a signed challenge message.

    Raises:
        ValidationError: If the message has no "Nonce: <hex>" segment
    """
    match = NONCE_PATTERN.search(message or "")
    if not match:
        raise ValidationError("no nonce segment in message", public_message="Invalid message format")
    return match.group(1)


def normalize_address(address: str) -> str:
    """
    Return the EIP-55 checksummed form of an Ethereum address.

    Lowercase, uppercase and correctly checksummed inputs are accepted; a mixed-case
    address with a wrong checksum is rejected like any other malformed input.

    Raises:
        ValidationError: If the address is not a valid Ethereum address
    """
    address = (address or "").strip()
    if not is_address(address):
        raise ValidationError(f"invalid wallet address {address!r}", public_message="Invalid wallet address")
    return to_checksum_address(address)


def decode_signature(signature: str) -> bytes:
    """
    Decode a hex signature and check it has the exact shape personal_sign emits.

    eth_account also recovers from v in {0, 1} and from EIP-155 style v >= 35, and
    ECDSA accepts (r, n - s) alongside (r, s). Each of those is a different byte
    string for the same signer, so anything but 65 bytes with v in {27, 28} and a
    low s is rejected.

    Raises:
        InvalidSignature: If the signature is not in that form
    """
    try:
        raw = decode_hex(signature or "")
    except (TypeError, ValueError) as exc:
        raise InvalidSignature(f"signature is not hex: {exc}") from exc

    if len(raw) != SIGNATURE_NUM_BYTES:
        raise InvalidSignature(f"signature is {len(raw)} bytes, expected {SIGNATURE_NUM_BYTES}")
    if raw[64] not in PERSONAL_SIGN_V:
        raise InvalidSignature(f"unsupported recovery id v={raw[64]}")
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    if not 0 < r < SECP256K1_N:
        raise InvalidSignature("signature r out of range")
    if not 0 < s <= SECP256K1_N // 2:
        raise InvalidSignature("signature s is not in the lower half of the curve order")
    return raw


def recover_address(message: str, signature: str) -> str:
    """
    Recover the checksummed signer address of an EIP-191 personal message.

    Raises:
        InvalidSignature: If the signature is malformed or recovery fails
    """
    raw = decode_signature(signature)
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=raw)
    except Exception as exc:
        raise InvalidSignature(f"signature recovery failed: {exc}") from exc
    return to_checksum_address(recovered)


def verify_signature(message: str, signature: str, claimed_address: str) -> str:
    """
    Verify an Ethereum wallet signature and return the normalized address.

    This is the main function called by /api/auth/verify. Both addresses are
    checksummed first and then compared exactly.

    Args:
        message: The exact challenge string that was signed
        signature: 65-byte ECDSA signature, hex encoded (0x prefix optional), v of 27 or 28
        claimed_address: Address the client says signed the message

    Returns:
        The checksummed wallet address

    Raises:
        ValidationError: If claimed_address is not a valid address
        InvalidSignature: If the signature cannot be decoded or recovered
        AddressMismatch: If the recovered signer is not claimed_address

    Example:
        address = verify_signature(
            message="Sign this message to authenticate with DilSe Matchify.\\n\\nNonce: ...",
            signature="0x4f1c...1b",
            claimed_address="0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        )
    """
    expected = normalize_address(claimed_address)
    recovered = recover_address(message, signature)
    if recovered != expected:
        raise AddressMismatch(f"recovered {recovered}, expected {expected}")
    return expected
