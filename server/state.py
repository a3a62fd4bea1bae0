import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from threading import Lock

from common.crypto import SCRYPT_N, hash_secret, verify_secret

logger = logging.getLogger(__name__)

@dataclass   # decorator to automatically generate init, repr, etc.
class Credential:   # one registered identity
    identity: str     # unique username-equivalent key
    salt: str         # Base64 scrypt salt
    digest: str       # Base64 scrypt digest of the secret
    active: bool = False   # True while exactly one connection holds this identity

class CredentialStore:
    # This class is the only owner of the "active" flags shared by all connections
    def __init__(self, scrypt_n: int = SCRYPT_N):
        self.lock = Lock()  # guards every read-modify-write of the credentials
        self.credentials: Dict[str, Credential] = {}   # identity -> Credential
        self.scrypt_n = scrypt_n
        self._decoy: Optional[Tuple[str, str]] = None   # checked for unknown identities

    def register(self, identity: str, secret: str) -> None:
        ''' This function adds or replaces a credential; the result is always inactive'''
        salt, digest = hash_secret(secret, n=self.scrypt_n)
        with self.lock:   # acquire the lock to ensure thread-safe access
            self.credentials[identity] = Credential(identity=identity, salt=salt, digest=digest)
        logger.debug("Registered identity %s", identity)

    def try_login(self, identity: str, secret: str) -> bool:
        '''
        This function claims the identity for one session.
        Returns False if the identity is unknown, the secret is wrong, or it is already active.
        '''
        with self.lock:
            cred = self.credentials.get(identity)
            if cred is not None and cred.active:
                return False
        if cred is None:
            # pay the same scrypt cost so the answer time does not reveal registered identities
            verify_secret(secret, *self._decoy_pair(), n=self.scrypt_n)
            return False
        # scrypt is slow; verify outside the lock against the record we saw
        if not verify_secret(secret, cred.salt, cred.digest, n=self.scrypt_n):
            return False
        with self.lock:
            # re-registration may have replaced the record meanwhile
            if self.credentials.get(identity) is not cred or cred.active:
                return False
            cred.active = True
            return True

    def _decoy_pair(self) -> Tuple[str, str]:
        if self._decoy is None:
            self._decoy = hash_secret("", n=self.scrypt_n)   # a race only hashes twice
        return self._decoy

    def logout(self, identity: str) -> None:
        ''' This function releases the identity; unknown identities are ignored'''
        with self.lock:
            cred = self.credentials.get(identity)
            if cred is not None:
                cred.active = False

    def is_registered(self, identity: str) -> bool:
        with self.lock:
            return identity in self.credentials

    def is_active(self, identity: str) -> bool:
        ''' This function reports whether a session currently holds the identity'''
        with self.lock:
            cred = self.credentials.get(identity)
            return cred is not None and cred.active

    def identities(self) -> List[str]:
        ''' This function retrieves a list of all registered identities'''
        with self.lock:
            return list(self.credentials.keys())

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and self.is_registered(identity)

    def __len__(self) -> int:
        with self.lock:
            return len(self.credentials)
