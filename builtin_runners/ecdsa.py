"""ECDSA signature builtin: instances of (public_key, message_hash).

The signature itself is not in memory. A hint supplies it through add_signature()
before the program writes the instance; the cell pair is then accepted only if the
signature verifies.
"""

from typing import Any, Dict, List, Tuple

from builtin_runners.base import BuiltinName, BuiltinRunner
from primitives.hashes import EC_CURVE_ORDER, verify_ecdsa
from primitives.relocatable import RelocatableValue
from vm.memory import Memory

Signature = Tuple[int, int]


class EcdsaBuiltinRunner(BuiltinRunner):
    name = BuiltinName.ECDSA
    cells_per_instance = 2
    n_input_cells = 2

    def __init__(self, included: bool = True):
        super().__init__(included)
        # Address of the public-key cell -> (r, s)
        self.signatures: Dict[RelocatableValue, Signature] = {}

    def add_signature(self, address: RelocatableValue, signature: Signature) -> None:
        """Register the signature for the instance whose public key lives at address."""
        if address.segment_index != self.segment_index or address.offset % 2 != 0:
            raise self.error(f"signature address {address} is not an instance start", address)
        r, s = signature
        self.signatures[address] = (r, s)

    def validate_cell(self, memory: Memory, address: RelocatableValue) -> None:
        pubkey_addr = address - address.offset % self.cells_per_instance
        inputs = self.instance_inputs(memory, pubkey_addr)
        if inputs is None:
            return
        pubkey, msg_hash = inputs
        if pubkey_addr not in self.signatures:
            raise self.error(f"signature hint is missing for instance at {pubkey_addr}", address)
        r, s = self.signatures[pubkey_addr]
        try:
            valid = verify_ecdsa(msg_hash, r, s, pubkey)
        except ValueError as exc:
            raise self.error(str(exc), address) from exc
        if not valid:
            raise self.error(
                f"signature ({r}, {s}) is invalid with respect to the public key {pubkey} "
                f"and the message hash {msg_hash}",
                address,
            )

    def air_private_input(self, memory: Memory) -> List[Dict[str, Any]]:
        res = []
        for addr, (r, s) in sorted(self.signatures.items()):
            inputs = self.instance_inputs(memory, addr)
            if inputs is None:
                continue
            res.append({
                "index": addr.offset // self.cells_per_instance,
                "pubkey": hex(inputs[0]),
                "msg": hex(inputs[1]),
                "signature_input": {"r": hex(r), "w": hex(pow(s, -1, EC_CURVE_ORDER))},
            })
        return res
