"""
Ledger Chain Module

Proof-of-work sealing, append and verification of per-vehicle chains.
"""

import time
from typing import Any, Dict, List, Optional

from ..core import (
    digest,
    canonical_encode,
    merkle_root,
    utc_now,
    StopRule,
    MiningTimeout,
    DIFFICULTY,
    GENESIS_SENTINEL,
    MINING_ATTEMPT_FACTOR,
    MINING_DEADLINE_CHECK_EVERY
)
from .models import Block, Chain, user_registry_payload, validate_payload


def compute_seal(
    index: int,
    timestamp: str,
    payload: Dict[str, Any],
    previous_seal_hash: str,
    nonce: int,
    merkle: str
) -> str:
    """
    Seal hash over the canonical encoding of the block fields.

    Pure function - no side effects.
    """
    return digest(canonical_encode({
        "index": index,
        "timestamp": timestamp,
        "payload": payload,
        "previous_seal_hash": previous_seal_hash,
        "nonce": nonce,
        "merkle_root": merkle
    }))


def meets_difficulty(seal_hash: str, difficulty: int) -> bool:
    """True when seal_hash starts with `difficulty` zero hex digits."""
    return seal_hash.startswith("0" * difficulty)


def mine_block(
    index: int,
    payload: Dict[str, Any],
    previous_seal_hash: str,
    difficulty: int = DIFFICULTY,
    timestamp: Optional[str] = None,
    max_attempts: Optional[int] = None,
    timeout_sec: Optional[float] = None
) -> Block:
    """
    Search nonces from 0 until the seal meets the difficulty.

    Args:
        index: Position of the new block
        payload: Tagged payload dict
        previous_seal_hash: Seal of the predecessor (or genesis sentinel)
        difficulty: Required leading zero hex digits
        timestamp: ISO timestamp (default: now)
        max_attempts: Nonce budget (default: 16**difficulty * 64)
        timeout_sec: Optional wall-clock budget

    Returns:
        Sealed Block

    Raises:
        MiningTimeout: If either budget is exhausted
    """
    valid, reason = validate_payload(payload)
    if not valid:
        raise StopRule("invalid_payload", reason, {"index": index})

    if timestamp is None:
        timestamp = utc_now().isoformat()
    if max_attempts is None:
        max_attempts = (16 ** difficulty) * MINING_ATTEMPT_FACTOR

    merkle = merkle_root([payload])
    prefix = "0" * difficulty
    started = time.monotonic()
    deadline = started + timeout_sec if timeout_sec is not None else None

    nonce = 0
    while nonce < max_attempts:
        seal = compute_seal(index, timestamp, payload, previous_seal_hash, nonce, merkle)
        if seal.startswith(prefix):
            return Block(
                index=index,
                timestamp=timestamp,
                payload=payload,
                seal_hash=seal,
                previous_seal_hash=previous_seal_hash,
                nonce=nonce,
                merkle_root=merkle
            )
        nonce += 1
        if deadline is not None and nonce % MINING_DEADLINE_CHECK_EVERY == 0:
            if time.monotonic() > deadline:
                break

    raise MiningTimeout(index, nonce, difficulty, time.monotonic() - started)


def create_chain(
    vehicle_id: str,
    owner_id: str,
    difficulty: int = DIFFICULTY,
    timestamp: Optional[str] = None,
    max_attempts: Optional[int] = None,
    timeout_sec: Optional[float] = None
) -> Chain:
    """
    Build a new chain with a mined user_registry genesis block.

    Args:
        vehicle_id: Vehicle the chain belongs to
        owner_id: Registering owner

    Returns:
        Chain holding exactly one block
    """
    if not vehicle_id:
        raise ValueError("vehicle_id cannot be empty")

    genesis = mine_block(
        0,
        user_registry_payload(vehicle_id, owner_id),
        GENESIS_SENTINEL,
        difficulty=difficulty,
        timestamp=timestamp,
        max_attempts=max_attempts,
        timeout_sec=timeout_sec
    )
    return Chain(vehicle_id=vehicle_id, owner_id=owner_id, blocks=[genesis])


def append_block(chain: Chain, block: Block) -> Block:
    """
    Append a block that extends the chain tail.

    Raises:
        StopRule: If index or linkage does not extend the tail
    """
    tail = chain.last_block
    if block.index != tail.index + 1:
        raise StopRule("non_contiguous_index",
                       f"Expected index {tail.index + 1}, got {block.index}",
                       {"vehicle_id": chain.vehicle_id})
    if block.previous_seal_hash != tail.seal_hash:
        raise StopRule("broken_linkage",
                       f"Block {block.index} does not link to the chain tail",
                       {"vehicle_id": chain.vehicle_id})
    chain.blocks.append(block)
    return block


def mine_and_append(
    chain: Chain,
    payload: Dict[str, Any],
    difficulty: int = DIFFICULTY,
    timestamp: Optional[str] = None,
    max_attempts: Optional[int] = None,
    timeout_sec: Optional[float] = None
) -> Block:
    """
    Mine the next block over the chain tail and append it.

    The chain is left untouched if mining raises.
    """
    tail = chain.last_block
    block = mine_block(
        tail.index + 1,
        payload,
        tail.seal_hash,
        difficulty=difficulty,
        timestamp=timestamp,
        max_attempts=max_attempts,
        timeout_sec=timeout_sec
    )
    return append_block(chain, block)


def verify_chain(chain: Chain, difficulty: int = DIFFICULTY) -> Dict[str, Any]:
    """
    Walk every block and collect all seal, proof-of-work and linkage errors.

    Args:
        chain: Chain to verify
        difficulty: Required leading zero hex digits

    Returns:
        Dict with valid (bool) and errors (list of messages naming the block)
    """
    errors: List[str] = []

    if not chain.blocks:
        return {"valid": False, "errors": ["Chain has no blocks"]}

    for i, block in enumerate(chain.blocks):
        if block.index != i:
            errors.append(f"Non-contiguous index at block {i}: stored {block.index}")

        recomputed = compute_seal(
            block.index,
            block.timestamp,
            block.payload,
            block.previous_seal_hash,
            block.nonce,
            block.merkle_root
        )
        if recomputed != block.seal_hash:
            errors.append(f"Invalid hash at block {i}")

        if not meets_difficulty(block.seal_hash, difficulty):
            errors.append(f"Invalid proof of work at block {i}")

        if merkle_root([block.payload]) != block.merkle_root:
            errors.append(f"Invalid merkle root at block {i}")

        expected_previous = GENESIS_SENTINEL if i == 0 else chain.blocks[i - 1].seal_hash
        if block.previous_seal_hash != expected_previous:
            errors.append(f"Broken chain at block {i}")

    return {"valid": len(errors) == 0, "errors": errors}


def error_indexes(errors: List[str]) -> List[int]:
    """Block indexes named by verify_chain error messages."""
    indexes = []
    for error in errors:
        tail = error.rsplit("block ", 1)
        if len(tail) == 2:
            number = tail[1].split(":", 1)[0]
            if number.isdigit():
                indexes.append(int(number))
    return sorted(set(indexes))
