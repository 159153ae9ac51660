"""AES-CBC decryption of HLS segments."""

from __future__ import annotations

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

BLOCK_SIZE = 16


def aes_decrypt(encrypted: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypt AES-CBC data and strip PKCS#5 padding.

    Only the first block-size bytes of ``iv`` are used. The padding byte is
    trusted as-is, matching how segment streams are produced.
    """
    if len(iv) < BLOCK_SIZE:
        raise ValueError(f"IV must be at least {BLOCK_SIZE} bytes")
    if not encrypted or len(encrypted) % BLOCK_SIZE:
        raise ValueError("input is not made of full blocks")

    decryptor = Cipher(algorithms.AES(bytes(key)), modes.CBC(bytes(iv[:BLOCK_SIZE]))).decryptor()
    decrypted = decryptor.update(bytes(encrypted)) + decryptor.finalize()

    pad = decrypted[-1]
    if pad > len(decrypted):
        raise ValueError("invalid padding")
    return decrypted[: len(decrypted) - pad]