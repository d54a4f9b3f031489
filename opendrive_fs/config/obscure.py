"""
Reversible obscuring of passwords stored in the config file.

This is not encryption: the key is fixed and public. It only keeps the
password from being readable at a glance.
"""
import base64
import os

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from opendrive_fs.errors import SetupError

BLOCK_SIZE = 16

_CRYPT_KEY = bytes([
    0x9c, 0x93, 0x5b, 0x48, 0x73, 0x0a, 0x55, 0x4d,
    0x6b, 0xfd, 0x7c, 0x63, 0xc8, 0x86, 0xa9, 0x2b,
    0xd3, 0x90, 0x19, 0x8e, 0xb8, 0x12, 0x8a, 0xfb,
    0xf4, 0xde, 0x16, 0x2b, 0x8b, 0x95, 0xf6, 0x38,
])


def _crypt(data: bytes, iv: bytes) -> bytes:
    # CTR mode is symmetric
    cipher = Cipher(algorithms.AES(_CRYPT_KEY), modes.CTR(iv))
    ctx = cipher.encryptor()
    return ctx.update(data) + ctx.finalize()


def obscure(plaintext: str) -> str:
    iv = os.urandom(BLOCK_SIZE)
    ciphertext = iv + _crypt(plaintext.encode("utf-8"), iv)
    return base64.urlsafe_b64encode(ciphertext).decode("ascii").rstrip("=")


def reveal(obscured: str) -> str:
    padded = obscured + "=" * (-len(obscured) % 4)
    try:
        ciphertext = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as e:
        raise SetupError("base64 decode failed when revealing password - is it obscured?") from e
    if len(ciphertext) < BLOCK_SIZE:
        raise SetupError("input too short when revealing password - is it obscured?")
    iv, buf = ciphertext[:BLOCK_SIZE], ciphertext[BLOCK_SIZE:]
    try:
        return _crypt(buf, iv).decode("utf-8")
    except UnicodeDecodeError as e:
        raise SetupError("revealed password is not valid UTF-8 - is it obscured?") from e
