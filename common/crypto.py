import base64, os
from typing import Tuple

from cryptography.hazmat.primitives import constant_time
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

ENC = "utf-8"
SALT_BYTES = 16
DIGEST_BYTES = 32
SCRYPT_N = 2 ** 14   # CPU/memory cost
SCRYPT_R = 8
SCRYPT_P = 1


def _kdf(salt: bytes, n: int) -> Scrypt:
    ''' Build a single-use scrypt instance (cryptography KDFs cannot be reused) '''
    return Scrypt(salt=salt, length=DIGEST_BYTES, n=n, r=SCRYPT_R, p=SCRYPT_P)

def hash_secret(secret: str, n: int = SCRYPT_N) -> Tuple[str, str]:
    '''
    The function derives a salted digest of a secret so it never has to be stored in plaintext.
        Input:
            - secret: the secret as text
            - n: scrypt cost parameter (power of two)
        Output: tuple of Base64 strings (salt, digest)
    '''
    salt = os.urandom(SALT_BYTES)  # fresh random salt per registration
    digest = _kdf(salt, n).derive(secret.encode(ENC))
    return b64(salt), b64(digest)

def verify_secret(secret: str, salt_b64: str, digest_b64: str, n: int = SCRYPT_N) -> bool:
    '''
    This function checks a secret against a stored (salt, digest) pair.
    Input:
        - secret: candidate secret as text
        - salt_b64, digest_b64: Base64 strings returned by hash_secret
        - n: scrypt cost parameter used when the digest was made
    Output: True if the secret matches
    '''
    candidate = _kdf(b64d(salt_b64), n).derive(secret.encode(ENC))
    # compare in constant time so the digest cannot be probed byte by byte
    return constant_time.bytes_eq(candidate, b64d(digest_b64))

def b64(b: bytes) -> str:
    ''' This function encodes bytes to a Base64 string '''
    return base64.b64encode(b).decode()

def b64d(s: str) -> bytes:
    ''' This function decodes a Base64 string to bytes '''
    return base64.b64decode(s.encode())
