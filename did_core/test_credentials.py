"""
Verifiable Credential Tests
============================

Kiểm thử CredentialLifecycle, CredentialVerifier và DIDService
"""

import json
from datetime import datetime, timedelta

import pytest

from did_core.connectors import ConnectorRegistry, InMemoryConnector
from did_core.credential_issuer import (
    CredentialEvent,
    CredentialLifecycle,
    CredentialState,
    VerifiableCredential,
    transition,
)
from did_core.credential_verifier import CredentialVerifier, VerificationStatus
from did_core.did_manager import DocumentManager
from did_core.did_service import DIDService, InMemorySecretSource
from did_core.errors import NotFoundError, ValidationError
from did_core.key_manager import KeyDerivationEngine
from did_core.signing import KeyType

TEST_MNEMONIC = " ".join(["abandon"] * 11 + ["about"])


class TestTransitions:

    @pytest.mark.parametrize("state, event, expected", [
        (CredentialState.PENDING_VERIFICATION, CredentialEvent.APPROVE, CredentialState.ISSUED),
        (CredentialState.PENDING_VERIFICATION, CredentialEvent.REJECT, CredentialState.REJECTED),
        (CredentialState.ISSUED, CredentialEvent.REVOKE, CredentialState.REVOKED),
        (CredentialState.REVOKED, CredentialEvent.REVOKE, CredentialState.REVOKED),
        (CredentialState.REVOKED, CredentialEvent.UNREVOKE, CredentialState.ISSUED),
    ])
    def test_allowed(self, state, event, expected):
        assert transition(state, event) == expected

    @pytest.mark.parametrize("state, event", [
        (CredentialState.ISSUED, CredentialEvent.APPROVE),
        (CredentialState.ISSUED, CredentialEvent.UNREVOKE),
        (CredentialState.REJECTED, CredentialEvent.APPROVE),
        (CredentialState.REJECTED, CredentialEvent.REVOKE),
        (CredentialState.PENDING_VERIFICATION, CredentialEvent.REVOKE),
        (CredentialState.REVOKED, CredentialEvent.REJECT),
    ])
    def test_illegal(self, state, event):
        with pytest.raises(ValidationError):
            transition(state, event)


class CredentialTestBase:

    def setup_method(self):
        self.registry = ConnectorRegistry()
        self.registry.register("mem", InMemoryConnector)
        self.manager = DocumentManager(self.registry)
        self.lifecycle = CredentialLifecycle(self.manager)
        self.verifier = CredentialVerifier(self.manager)

        engine = KeyDerivationEngine()
        root = engine.root_key_pair(KeyType.ED25519, TEST_MNEMONIC)
        self.issuer_key = engine.child_key_pair(root, "m/10")
        self.other_key = engine.child_key_pair(root, "m/11")
        self.issuer = self.manager.create_document(self.issuer_key, "mem")
        self.method_id = self.issuer.verification_method[0].id

    def issue(self, **kwargs):
        return self.lifecycle.issue(
            self.issuer.id,
            self.method_id,
            self.issuer_key.private_key,
            {"id": "did:ssi:mem:holder", "degree": "BSc"},
            **kwargs
        )


class TestCredentialLifecycle(CredentialTestBase):
    """Test issuance and revocation"""

    def test_issue_signed(self):
        credential = self.issue()

        assert credential.state == CredentialState.ISSUED
        assert credential.revocation_index == 0
        assert credential.id.startswith("urn:uuid:")
        assert credential.to_dict()["credentialStatus"]["revocationBitmapIndex"] == "0"
        assert self.manager.verify_proof(self.method_id, credential.signing_payload(), credential.proof)
        print(f"✅ Issued {credential.id}")

    def test_indices_unique(self):
        indices = [self.issue().revocation_index for _ in range(3)]
        assert indices == [0, 1, 2]

    def test_revoke_and_unrevoke_at_index_7(self):
        credential = self.issue(revocation_index=7)
        assert credential.revocation_index == 7

        self.lifecycle.revoke(credential, self.issuer_key.private_key)
        assert credential.state == CredentialState.REVOKED
        registry = self.manager.resolve_document(self.issuer.id).revocation_registry
        assert registry.get(7)
        assert registry.revoked_indices() == [7]

        self.lifecycle.unrevoke(credential, self.issuer_key.private_key)
        assert credential.state == CredentialState.ISSUED
        assert not self.manager.resolve_document(self.issuer.id).revocation_registry.get(7)

    def test_revoke_idempotent(self):
        credential = self.issue()
        self.lifecycle.revoke(credential, self.issuer_key.private_key)
        before = self.manager.resolve_document(self.issuer.id)

        self.lifecycle.revoke(credential, self.issuer_key.private_key)
        after = self.manager.resolve_document(self.issuer.id)

        assert credential.state == CredentialState.REVOKED
        assert after.revocation_registry == before.revocation_registry
        assert after.version == before.version
        assert self.lifecycle.is_revoked(credential)

    def test_unrevoke_never_revoked(self):
        credential = self.issue()
        with pytest.raises(ValidationError):
            self.lifecycle.unrevoke(credential, self.issuer_key.private_key)

    def test_unrevoke_requires_bit(self):
        credential = self.issue()
        credential.state = CredentialState.REVOKED
        with pytest.raises(ValidationError):
            self.lifecycle.unrevoke(credential, self.issuer_key.private_key)

    def test_explicit_index_below_watermark(self):
        self.issue(revocation_index=5)
        with pytest.raises(ValidationError):
            self.issue(revocation_index=2)

    def test_deferred_signing(self):
        credential = self.issue(defer_signing=True)
        assert credential.state == CredentialState.PENDING_VERIFICATION
        assert credential.proof is None

        self.lifecycle.approve(credential, self.issuer_key.private_key)
        assert credential.state == CredentialState.ISSUED
        assert credential.proof is not None

    def test_reject_pending(self):
        credential = self.issue(defer_signing=True)
        self.lifecycle.reject(credential)
        assert credential.state == CredentialState.REJECTED

        with pytest.raises(ValidationError):
            self.lifecycle.approve(credential, self.issuer_key.private_key)
        with pytest.raises(ValidationError):
            self.lifecycle.revoke(credential, self.issuer_key.private_key)

    def test_issue_with_foreign_key(self):
        with pytest.raises(ValidationError):
            self.lifecycle.issue(self.issuer.id, self.method_id, self.other_key.private_key, {"id": "x"})
        # Nothing allocated
        assert self.manager.get_revocation_registry(self.issuer.id).next_index == 0

    def test_issue_with_unknown_method(self):
        with pytest.raises(NotFoundError):
            self.lifecycle.issue(self.issuer.id, "missing", self.issuer_key.private_key, {"id": "x"})

    def test_custom_types_and_contexts(self):
        credential = self.issue(
            types=["UniversityDegreeCredential"],
            contexts=["https://www.w3.org/2018/credentials/examples/v1"],
            validity_days=30
        )
        data = credential.to_dict()
        assert data["type"] == ["VerifiableCredential", "UniversityDegreeCredential"]
        assert data["@context"][0] == "https://www.w3.org/2018/credentials/v1"
        assert "expirationDate" in data


class TestCredentialVerifier(CredentialTestBase):
    """Test credential verification"""

    def test_valid(self):
        result = self.verifier.verify(self.issue())
        assert result.status == VerificationStatus.VALID
        assert result.is_valid
        assert all(result.checks.values())

    def test_json_roundtrip(self):
        credential = self.issue()
        result = self.verifier.verify_json(credential.to_json())
        assert result.status == VerificationStatus.VALID
        assert result.subject == "did:ssi:mem:holder"

    def test_tampered_claims(self):
        credential = self.issue()
        data = credential.to_dict()
        data["credentialSubject"]["degree"] = "PhD"

        result = self.verifier.verify_json(json.dumps(data))
        assert result.status == VerificationStatus.INVALID_SIGNATURE
        assert not result.is_valid

    def test_revoked(self):
        credential = self.issue()
        self.lifecycle.revoke(credential, self.issuer_key.private_key)

        assert self.verifier.verify(credential).status == VerificationStatus.REVOKED
        assert self.verifier.verify(credential, check_revocation=False).status == VerificationStatus.VALID

    def test_expired(self):
        credential = self.issue()
        credential.expiration_date = (datetime.utcnow() - timedelta(days=1)).isoformat() + "Z"
        assert self.verifier.verify(credential).status == VerificationStatus.EXPIRED

    def test_missing_proof(self):
        credential = self.issue(defer_signing=True)
        result = self.verifier.verify(credential)
        assert result.status == VerificationStatus.MALFORMED
        assert "Missing proof" in result.errors

    def test_malformed_json(self):
        assert self.verifier.verify_json("{not json").status == VerificationStatus.MALFORMED

    @pytest.mark.parametrize("field, value", [
        ("credentialSubject", ["did:ssi:mem:holder"]),
        ("issuanceDate", 123),
        ("expirationDate", 5),
        ("issuer", {"id": "did:ssi:mem:abc"}),
        ("type", "VerifiableCredential"),
    ])
    def test_wrongly_typed_fields(self, field, value):
        data = self.issue().to_dict()
        data[field] = value

        result = self.verifier.verify_json(json.dumps(data))
        assert result.status == VerificationStatus.MALFORMED
        assert not result.is_valid

    def test_proof_purpose_must_be_assertion(self):
        credential = self.issue()
        credential.proof.proof_purpose = "authentication"

        result = self.verifier.verify(credential)
        assert result.status == VerificationStatus.INVALID_SIGNATURE
        assert not result.checks["signature"]

    def test_authentication_proof_not_accepted(self):
        credential = self.issue()
        credential.proof = self.manager.create_proof(
            self.method_id,
            self.issuer_key.private_key,
            credential.signing_payload(),
            proof_purpose="authentication"
        )
        assert self.verifier.verify(credential).status == VerificationStatus.INVALID_SIGNATURE

    def test_issuer_not_found(self):
        credential = self.issue()
        credential.issuer = "did:ssi:mem:" + "f" * 64
        assert self.verifier.verify(credential).status == VerificationStatus.ISSUER_NOT_FOUND

    def test_key_removed_from_issuer(self):
        credential = self.issue()
        added = self.manager.add_verification_method(
            self.issuer.id, self.issuer_key.private_key, self.other_key, "key-2"
        )
        self.manager.remove_verification_method(self.issuer.id, self.other_key.private_key, self.method_id)

        assert added.id != self.method_id
        assert self.verifier.verify(credential).status == VerificationStatus.KEY_NOT_FOUND

    def test_trusted_issuer(self):
        credential = self.issue()
        result = self.verifier.verify(credential, require_trusted_issuer=True)
        assert result.status == VerificationStatus.UNTRUSTED_ISSUER

        self.verifier.add_trusted_issuer(self.issuer.id)
        assert self.verifier.is_trusted_issuer(self.issuer.id)
        assert self.verifier.verify(credential, require_trusted_issuer=True).is_valid

    def test_from_dict_state(self):
        pending = VerifiableCredential.from_dict(self.issue(defer_signing=True).to_dict())
        issued = VerifiableCredential.from_dict(self.issue().to_dict())
        assert pending.state == CredentialState.PENDING_VERIFICATION
        assert issued.state == CredentialState.ISSUED
        assert issued.revocation_index == 1


class TestDIDService:
    """Test the integration service"""

    def setup_method(self):
        self.secrets = InMemorySecretSource({"alice": TEST_MNEMONIC})
        self.service = DIDService(self.secrets)

    def test_create_identity(self):
        document, key_pair = self.service.create_identity("alice")

        assert document.id.startswith("did:ssi:mem:")
        assert key_pair == self.service.root_key_pair("alice")
        assert self.service.resolve(document.id).verification_method[0].public_key_bytes() == key_pair.public_key

    def test_create_identity_with_path(self):
        document, key_pair = self.service.create_identity("alice", key_type="secp256k1", path="m/44/60")
        assert key_pair.key_type == KeyType.SECP256K1
        assert key_pair != self.service.root_key_pair("alice", "secp256k1")

    def test_unknown_namespace(self):
        with pytest.raises(NotFoundError):
            self.service.create_identity("alice", namespace="ns-a")

    def test_unknown_secret(self):
        with pytest.raises(NotFoundError):
            self.service.create_identity("bob")

    def test_application_key_pair(self):
        wallet = self.service.application_key_pair("alice", "wallet")
        assert wallet == self.service.application_key_pair("alice", "wallet")
        assert wallet != self.service.application_key_pair("alice", "chat")
        assert wallet != self.service.root_key_pair("alice")

    def test_end_to_end(self):
        document, key_pair = self.service.create_identity("alice")
        credential = self.service.credentials.issue(
            document.id,
            document.verification_method[0].id,
            key_pair.private_key,
            {"id": "did:ssi:mem:bob", "role": "member"}
        )
        assert self.service.verifier.verify(credential).is_valid

        self.service.credentials.revoke(credential, key_pair.private_key)
        assert self.service.verifier.verify(credential).status == VerificationStatus.REVOKED
