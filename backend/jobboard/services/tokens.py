from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# 32 random bytes -> 64 hex chars -> 256 bits of entropy per token.
TOKEN_BYTES = 32


class EntropySourceUnavailable(RuntimeError):
    """Raised when the OS secure random source cannot be read."""


@dataclass(frozen=True)
class IssuedTokens:
    acceptance_token: str
    reschedule_token: str


class TokenIssuer:
    """
    Generates the pair of candidate response tokens for one interview.

    Uniqueness is probabilistic (256 bits each); the unique constraints on
    `interview_tokens` are the backstop.
    """

    def __init__(self, nbytes: int = TOKEN_BYTES):
        if nbytes < TOKEN_BYTES:
            raise ValueError(f"Response tokens need at least {TOKEN_BYTES} bytes of entropy")
        self.nbytes = nbytes

    def _generate(self) -> str:
        try:
            return secrets.token_hex(self.nbytes)
        except (NotImplementedError, OSError) as exc:
            logger.critical("Secure random source unavailable; refusing to issue interview tokens")
            raise EntropySourceUnavailable("Secure random source is unavailable") from exc

    def issue(self) -> IssuedTokens:
        acceptance = self._generate()
        reschedule = self._generate()
        while reschedule == acceptance:
            reschedule = self._generate()
        return IssuedTokens(acceptance_token=acceptance, reschedule_token=reschedule)
