"""
Provably-fair outcome derivation.

Every outcome is a pure function of (server_seed, client_seed, nonce). The
server seed stays secret behind its SHA-256 commitment until the round (or
seed pair) is retired, so anyone can recompute the result afterwards.
"""

import hashlib
import hmac
import secrets
from decimal import Decimal

from casino_rounds.exceptions import InvalidSeedError

ROULETTE_POCKETS = 37
MAX_CRASH_MULTIPLIER = Decimal("9999.00")
DEFAULT_HOUSE_EDGE = 0.01

_UINT32_MASK = 0xFFFFFFFF
_CRASH_HASH_BITS = 52


def generate_server_seed() -> str:
    return secrets.token_hex(32)

def hash_server_seed(server_seed: str) -> str:
    """Public commitment published before the seed is used."""
    if not isinstance(server_seed, str) or not server_seed:
        raise InvalidSeedError("Server seed must be a non-empty string.")
    return hashlib.sha256(server_seed.encode("utf-8")).hexdigest()

def validate_seed_material(server_seed, client_seed, nonce):
    if not isinstance(server_seed, str) or not server_seed:
        raise InvalidSeedError("Server seed must be a non-empty string.", details={'field': 'server_seed'})
    if not isinstance(client_seed, str):
        raise InvalidSeedError("Client seed must be a string.", details={'field': 'client_seed'})
    # bool is an int subclass; True/False are not nonces
    if isinstance(nonce, bool) or not isinstance(nonce, int):
        raise InvalidSeedError("Nonce must be an integer.", details={'field': 'nonce'})
    if nonce < 0:
        raise InvalidSeedError("Nonce must not be negative.", details={'field': 'nonce'})

def hmac_sha256_hex(server_seed: str, message: str) -> str:
    return hmac.new(
        server_seed.encode("utf-8"),
        msg=message.encode("utf-8"),
        digestmod=hashlib.sha256
    ).hexdigest()

def _round_digest(server_seed, client_seed, nonce) -> str:
    validate_seed_material(server_seed, client_seed, nonce)
    return hmac_sha256_hex(server_seed, f"{client_seed}-{nonce}")


def roulette_winning_number(server_seed: str, client_seed: str, nonce: int) -> int:
    """
    Winning pocket on a single-zero wheel.

    Takes the first 32 bits of the round digest modulo 37. The modulo bias
    (about 37 / 2**32) is accepted; changing the reduction would change every
    previously published result.
    """
    digest = _round_digest(server_seed, client_seed, nonce)
    return int(digest[:8], 16) % ROULETTE_POCKETS

def crash_point(server_seed: str, client_seed: str, nonce: int,
                house_edge: float = DEFAULT_HOUSE_EDGE,
                cap: Decimal = MAX_CRASH_MULTIPLIER) -> Decimal:
    """
    Crash multiplier with a Bustabit-like distribution.

    One in int(1 / house_edge) outcomes busts instantly at 1.00x. The rest map
    the first 52 bits r of the digest to floor(100 / (1 - r)) / 100.
    """
    if not (0 <= house_edge < 1):
        raise ValueError("House edge must be between 0 (inclusive) and 1 (exclusive).")

    digest = _round_digest(server_seed, client_seed, nonce)
    game_hash_int = int(digest[:_CRASH_HASH_BITS // 4], 16)

    if house_edge > 0:
        divisor = int(1.0 / house_edge)
        if game_hash_int % divisor == 0:
            return Decimal("1.00")

    span = 2 ** _CRASH_HASH_BITS
    # exact integer arithmetic keeps the result reproducible across platforms
    cents = (100 * span) // (span - game_hash_int)
    multiplier = (Decimal(cents) / 100).quantize(Decimal("0.01"))
    return min(multiplier, Decimal(cap))


class Xorshift128:
    """xorshift128 generator over four unsigned 32-bit words."""

    def __init__(self, state):
        words = [int(w) & _UINT32_MASK for w in state]
        if len(words) != 4:
            raise InvalidSeedError("Xorshift128 needs exactly four 32-bit state words.")
        if not any(words):
            raise InvalidSeedError("Xorshift128 state must not be all zero.")
        self._state = words

    @classmethod
    def from_seeds(cls, server_seed: str, client_seed: str, nonce: int) -> "Xorshift128":
        validate_seed_material(server_seed, client_seed, nonce)
        digest = hashlib.sha256(f"{server_seed}:{client_seed}:{nonce}".encode("utf-8")).hexdigest()
        return cls(int(digest[i * 8:(i + 1) * 8], 16) for i in range(4))

    def next_uint32(self) -> int:
        s0, s1, s2, s3 = self._state
        t = s0
        t ^= (t << 11) & _UINT32_MASK
        t ^= t >> 8
        t ^= s3
        t ^= s3 >> 19
        self._state = [s1, s2, s3, t & _UINT32_MASK]
        return self._state[3]

    def next_float(self) -> float:
        return self.next_uint32() / 0x100000000


def seeded_shuffle(items, rng: Xorshift128) -> list:
    """Fisher-Yates shuffle driven by rng. Returns a new list."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = int(rng.next_float() * (i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled

def keno_draw(server_seed: str, client_seed: str, nonce: int, pool_size: int = 40, draw_count: int = 10) -> list:
    if not (0 < draw_count <= pool_size):
        raise ValueError("draw_count must be between 1 and pool_size.")
    rng = Xorshift128.from_seeds(server_seed, client_seed, nonce)
    return seeded_shuffle(range(1, pool_size + 1), rng)[:draw_count]

def plinko_path(server_seed: str, client_seed: str, nonce: int, rows: int) -> list:
    """One direction per peg row: -1 bounces left, +1 bounces right."""
    if rows <= 0:
        raise ValueError("rows must be positive.")
    rng = Xorshift128.from_seeds(server_seed, client_seed, nonce)
    return [-1 if rng.next_float() < 0.5 else 1 for _ in range(rows)]

def shuffled_shoe(server_seed: str, client_seed: str, nonce: int, cards) -> list:
    rng = Xorshift128.from_seeds(server_seed, client_seed, nonce)
    return seeded_shuffle(cards, rng)


_ROUND_DERIVATIONS = {
    'roulette': roulette_winning_number,
    'crash': crash_point,
}

def derive_outcome(game: str, server_seed: str, client_seed: str, nonce: int):
    try:
        derivation = _ROUND_DERIVATIONS[game]
    except KeyError:
        raise ValueError(f"No round outcome derivation for game '{game}'.")
    return derivation(server_seed, client_seed, nonce)

def verify_outcome(game: str, server_seed: str, client_seed: str, nonce: int, outcome) -> bool:
    expected = derive_outcome(game, server_seed, client_seed, nonce)
    if game == 'crash':
        return expected == Decimal(str(outcome))
    return expected == int(outcome)
