"""One-way digest of refresh-token plaintexts."""

from __future__ import annotations

import hashlib


class TokenHasher:
    """
    SHA-256 hex digest of a plaintext refresh token.

    Plaintexts are high-entropy random strings, so an unsalted fast digest is
    sufficient and keeps lookups by hash deterministic. Only the digest is
    ever persisted or compared.
    """

    def hash(self, plaintext: str) -> str:
        """
        Return the 64-char lowercase hex digest of ``plaintext``.

        :param plaintext: Token as handed to the client.
        :type plaintext: str
        :rtype: str
        """
        # JSON may decode to lone surrogates such as "\ud800"; surrogatepass
        # keeps them hashable instead of raising UnicodeEncodeError.
        return hashlib.sha256(plaintext.encode("utf-8", "surrogatepass")).hexdigest()
