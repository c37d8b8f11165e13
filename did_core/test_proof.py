"""
Proof Engine Tests
===================
"""

import pytest

from did_core.errors import ValidationError
from did_core.key_manager import KeyDerivationEngine
from did_core.proof import Proof, ProofEngine, canonicalize
from did_core.revocation import RevocationRegistry
from did_core.signing import KeyType

TEST_MNEMONIC = " ".join(["abandon"] * 11 + ["about"])


@pytest.mark.parametrize("key_type", [KeyType.ED25519, KeyType.SECP256K1])
class TestProofEngine:
    """Test detached proofs for every key type"""

    def setup_method(self):
        self.engine = ProofEngine()
        self.keys = KeyDerivationEngine()
        self.payload = canonicalize({"b": 1, "a": "xin chào"})

    def test_roundtrip(self, key_type):
        key_pair = self.keys.root_key_pair(key_type, TEST_MNEMONIC)
        proof = self.engine.create_proof("did:ssi:mem:abc#key-1", key_type, key_pair.private_key, self.payload)

        assert proof.verification_method_id == "did:ssi:mem:abc#key-1"
        assert self.engine.verify_proof(key_pair.public_key, self.payload, proof)
        print(f"✅ {proof.type} round trip")

    def test_single_byte_mutation_fails(self, key_type):
        key_pair = self.keys.root_key_pair(key_type, TEST_MNEMONIC)
        proof = self.engine.create_proof("did:ssi:mem:abc#key-1", key_type, key_pair.private_key, self.payload)

        tampered = bytearray(self.payload)
        tampered[0] ^= 0x01
        assert not self.engine.verify_proof(key_pair.public_key, bytes(tampered), proof)

        bad_signature = bytearray(proof.signature_value)
        bad_signature[5] ^= 0x01
        proof.signature_value = bytes(bad_signature)
        assert not self.engine.verify_proof(key_pair.public_key, self.payload, proof)

    def test_deterministic(self, key_type):
        key_pair = self.keys.root_key_pair(key_type, TEST_MNEMONIC)
        created = "2024-01-01T00:00:00Z"
        first = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload, created=created)
        second = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload, created=created)
        assert first.signature_value == second.signature_value

    def test_proof_options_are_signed(self, key_type):
        key_pair = self.keys.root_key_pair(key_type, TEST_MNEMONIC)
        proof = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload)

        proof.created = "1999-01-01T00:00:00Z"
        assert not self.engine.verify_proof(key_pair.public_key, self.payload, proof)

        proof = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload)
        proof.proof_purpose = "authentication"
        assert not self.engine.verify_proof(key_pair.public_key, self.payload, proof)

        proof = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload)
        proof.verification_method_id = "other"
        assert not self.engine.verify_proof(key_pair.public_key, self.payload, proof)

    def test_dict_roundtrip(self, key_type):
        key_pair = self.keys.root_key_pair(key_type, TEST_MNEMONIC)
        proof = self.engine.create_proof("vm", key_type, key_pair.private_key, self.payload)
        restored = Proof.from_dict(proof.to_dict())

        assert restored == proof
        assert self.engine.verify_proof(key_pair.public_key, self.payload, restored)


class TestProofValidation:

    def setup_method(self):
        self.engine = ProofEngine()
        self.key_pair = KeyDerivationEngine().root_key_pair(KeyType.ED25519, TEST_MNEMONIC)

    def test_payload_must_be_bytes(self):
        with pytest.raises(ValidationError):
            self.engine.create_proof("vm", KeyType.ED25519, self.key_pair.private_key, "text")

    def test_wrong_public_key_length(self):
        proof = self.engine.create_proof("vm", KeyType.ED25519, self.key_pair.private_key, b"data")
        with pytest.raises(ValidationError):
            self.engine.verify_proof(self.key_pair.public_key[:31], b"data", proof)

    def test_unknown_proof_type(self):
        proof = self.engine.create_proof("vm", KeyType.ED25519, self.key_pair.private_key, b"data")
        proof.type = "RsaSignature2018"
        with pytest.raises(ValidationError):
            self.engine.verify_proof(self.key_pair.public_key, b"data", proof)

    def test_malformed_proof_dict(self):
        with pytest.raises(ValidationError):
            Proof.from_dict({"type": "Ed25519Signature2020"})

    def test_canonical_form(self):
        assert canonicalize({"b": [1, 2], "a": "é"}) == '{"a":"é","b":[1,2]}'.encode("utf-8")


class TestRevocationRegistry:
    """Test bitmap encoding and index allocation"""

    def setup_method(self):
        self.registry = RevocationRegistry()

    def test_default_size(self):
        assert self.registry.size == 131072
        assert not self.registry.get(131071)
        with pytest.raises(ValidationError):
            self.registry.get(131072)

    def test_msb_first_bit_order(self):
        self.registry.set(0, True)
        self.registry.set(9, True)
        assert self.registry._bits[0] == 0x80
        assert self.registry._bits[1] == 0x40

    def test_service_roundtrip(self):
        self.registry.allocate(3)
        self.registry.set(3, True)
        service = self.registry.to_service("did:ssi:mem:abc")

        assert service["id"] == "did:ssi:mem:abc#revocation"
        assert service["serviceEndpoint"].startswith("data:application/octet-stream;base64,")
        assert service["nextIndex"] == 4

        restored = RevocationRegistry.from_service(service)
        assert restored == self.registry
        assert restored.revoked_indices() == [3]

    def test_encoding_is_stable(self):
        other = RevocationRegistry()
        assert self.registry.to_service("did:x:y:z") == other.to_service("did:x:y:z")

    def test_malformed_service(self):
        with pytest.raises(ValidationError):
            RevocationRegistry.from_service({"type": "BitstringStatusList", "serviceEndpoint": "https://x"})
        with pytest.raises(ValidationError):
            RevocationRegistry.from_service({
                "type": "BitstringStatusList",
                "serviceEndpoint": "data:application/octet-stream;base64,AAAA"
            })

    def test_allocation_never_reuses(self):
        assert self.registry.allocate() == 0
        assert self.registry.allocate(10) == 10
        assert self.registry.allocate() == 11
        with pytest.raises(ValidationError):
            self.registry.allocate(5)
