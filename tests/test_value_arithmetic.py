"""
Value Arithmetic, Transaction Body and Signature Aggregation Tests

Covers:
- Commitment homomorphism and encodings
- Schnorr single-signer and aggregate signatures
- Output opening proofs
- Fee rule and kernel messages
- Aggregator partial/final verification

Run with: pytest tests/test_value_arithmetic.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from mwslate import aggregator
from mwslate.aggregator import SignatureShare
from mwslate.errors import InvalidPartialSignature, InvalidSlate
from mwslate.secp import (
    GENERATOR_G,
    GENERATOR_H,
    N,
    Commitment,
    OutputProof,
    PublicKey,
    Signature,
    blind_sum,
    commit,
    commit_value,
    hash_message,
    pubkey_from_secret,
    random_scalar,
    sign,
    sum_commits,
    sum_pubkeys,
    verify,
)
from mwslate.transaction import (
    KernelFeatures,
    Output,
    OutputFeatures,
    Transaction,
    TxKernel,
    kernel_sig_msg,
    tx_fee,
)


# =============================================================================
# COMMITMENTS
# =============================================================================

class TestCommitments:
    """Tests for Pedersen commitments."""

    def test_commitments_add_homomorphically(self):
        """commit(a, r1) + commit(b, r2) == commit(a + b, r1 + r2)."""
        r1, r2 = random_scalar(), random_scalar()
        assert commit(5, r1) + commit(7, r2) == commit(12, (r1 + r2) % N)

    def test_sum_commits_with_negatives(self):
        r_in, r_out = random_scalar(), random_scalar()
        total = sum_commits([commit(10, r_out)], [commit(10, r_in)])
        assert total == pubkey_from_secret(blind_sum([r_out], [r_in])).to_commitment()

    def test_commit_zero_value_is_blind_times_g(self):
        r = random_scalar()
        assert commit(0, r).to_pubkey() == pubkey_from_secret(r)

    def test_commit_value_is_value_times_h(self):
        assert commit_value(3).to_pubkey() == GENERATOR_H.mul(3)

    def test_h_is_not_g(self):
        assert GENERATOR_H != GENERATOR_G
        assert GENERATOR_H.has_even_y

    def test_negative_value_rejected(self):
        with pytest.raises(ValueError):
            commit(-1, random_scalar())

    def test_commitment_encoding_prefix(self):
        c = commit(42, random_scalar())
        raw = c.to_bytes()
        assert len(raw) == 33
        assert raw[0] in (0x08, 0x09)
        assert Commitment.from_bytes(raw) == c
        assert Commitment.from_hex(c.hex()) == c

    def test_public_key_encoding_prefix(self):
        p = pubkey_from_secret(random_scalar())
        assert p.to_bytes()[0] in (0x02, 0x03)
        assert PublicKey.from_hex(p.hex()) == p

    def test_commitment_rejects_pubkey_prefix(self):
        p = pubkey_from_secret(random_scalar())
        with pytest.raises(ValueError):
            Commitment.from_bytes(p.to_bytes())

    def test_infinity_round_trips_as_zero_bytes(self):
        inf = Commitment.infinity()
        assert inf.to_bytes() == bytes(33)
        assert Commitment.from_bytes(bytes(33)).is_infinity

    def test_point_minus_itself_is_infinity(self):
        c = commit(9, random_scalar())
        assert (c - c).is_infinity


# =============================================================================
# SCHNORR SIGNATURES
# =============================================================================

class TestSchnorr:
    """Tests for single and aggregate Schnorr signatures."""

    def test_sign_and_verify(self):
        key = random_scalar()
        msg = hash_message("hello")
        sig = sign(msg, key, random_scalar())
        assert verify(sig, msg, pubkey_from_secret(key))

    def test_wrong_message_fails(self):
        key = random_scalar()
        sig = sign(hash_message("hello"), key, random_scalar())
        assert not verify(sig, hash_message("goodbye"), pubkey_from_secret(key))

    def test_wrong_key_fails(self):
        msg = hash_message("hello")
        sig = sign(msg, random_scalar(), random_scalar())
        assert not verify(sig, msg, pubkey_from_secret(random_scalar()))

    def test_zero_signature_never_verifies(self):
        assert not verify(Signature.zero(), hash_message("x"), pubkey_from_secret(random_scalar()))

    def test_signature_encoding(self):
        sig = sign(hash_message("m"), random_scalar(), random_scalar())
        assert len(sig.to_bytes()) == 64
        assert Signature.from_hex(sig.hex()) == sig

    def test_signature_wrong_length_rejected(self):
        with pytest.raises(ValueError):
            Signature.from_bytes(bytes(63))


# =============================================================================
# OUTPUT PROOFS
# =============================================================================

class TestOutputProof:
    """Tests for the commitment opening proof."""

    def test_proof_verifies_own_commitment(self):
        r = random_scalar()
        c = commit(1000, r)
        proof = OutputProof.create(1000, r, c)
        assert proof.verify(c)
        assert len(proof.to_bytes()) == OutputProof.SIZE == 97

    def test_proof_fails_for_other_commitment(self):
        r = random_scalar()
        proof = OutputProof.create(1000, r)
        assert not proof.verify(commit(1001, r))

    def test_proof_hex_round_trip(self):
        r = random_scalar()
        c = commit(5, r)
        proof = OutputProof.create(5, r, c)
        assert OutputProof.from_hex(proof.hex()).verify(c)


# =============================================================================
# TRANSACTION BODY
# =============================================================================

class TestTransactionBody:
    """Tests for fees, kernel messages and the balance law."""

    def test_fee_one_input_two_outputs(self):
        assert tx_fee(1, 2, 1) == 8_000_000

    def test_fee_has_minimum_weight_of_one(self):
        assert tx_fee(10, 1, 1) == 1_000_000

    def test_fee_scales_with_base_fee(self):
        assert tx_fee(1, 2, 1, base_fee=10) == 80

    def test_kernel_features_follow_lock_height(self):
        assert KernelFeatures.for_lock_height(0) == KernelFeatures.PLAIN
        assert KernelFeatures.for_lock_height(100) == KernelFeatures.HEIGHT_LOCKED

    def test_kernel_message_commits_to_fee_and_lock_height(self):
        plain = kernel_sig_msg(KernelFeatures.PLAIN, 8_000_000, 0)
        assert plain != kernel_sig_msg(KernelFeatures.PLAIN, 9_000_000, 0)
        locked = kernel_sig_msg(KernelFeatures.HEIGHT_LOCKED, 8_000_000, 10)
        assert locked != kernel_sig_msg(KernelFeatures.HEIGHT_LOCKED, 8_000_000, 11)
        assert len(plain) == 32

    def test_empty_kernel_is_incomplete(self):
        kernel = TxKernel.empty(fee=8_000_000)
        assert not kernel.is_complete
        assert not kernel.verify()

    def test_balanced_transaction_validates(self):
        """A one-input, two-output body signed by a single party balances."""
        fee = tx_fee(1, 2, 1)
        r_in, r_change, r_dest = random_scalar(), random_scalar(), random_scalar()
        value_in, amount = 10_000_000_000, 6_000_000_000
        change = value_in - amount - fee
        offset = random_scalar()

        tx = Transaction(offset=offset)
        tx.add_input(OutputFeatures.PLAIN, commit(value_in, r_in))
        for value, blind in ((change, r_change), (amount, r_dest)):
            c = commit(value, blind)
            tx.add_output(Output(OutputFeatures.PLAIN, c, OutputProof.create(value, blind, c)))

        excess = blind_sum([r_change, r_dest], [r_in, offset])
        kernel = TxKernel.empty(fee)
        kernel.excess = pubkey_from_secret(excess).to_commitment()
        kernel.excess_sig = sign(kernel.msg_to_sign(), excess, random_scalar())
        tx.body.kernels.append(kernel)

        assert tx.verify_kernel_sums()
        assert tx.validate() == []

        tx.body.kernels[0].fee = fee + 1
        problems = tx.validate()
        assert "kernel sums do not balance" in problems
        assert "kernel 0 signature does not verify" in problems

    @pytest.mark.parametrize("n_inputs,n_outputs", [(1, 1), (1, 10), (3, 2), (7, 5), (10, 10)])
    def test_kernel_excess_matches_body(self, n_inputs, n_outputs):
        """Recomputed excess equals the signed excess for any body shape."""
        fee = tx_fee(n_inputs, n_outputs, 1)
        in_values = [1_000_000_000 * (i + 1) for i in range(n_inputs)]
        spendable = sum(in_values) - fee
        out_values = [spendable // n_outputs] * n_outputs
        out_values[-1] += spendable - sum(out_values)
        in_blinds = [random_scalar() for _ in in_values]
        out_blinds = [random_scalar() for _ in out_values]
        offset = random_scalar()

        tx = Transaction(offset=offset)
        for value, blind in zip(in_values, in_blinds):
            tx.add_input(OutputFeatures.PLAIN, commit(value, blind))
        for value, blind in zip(out_values, out_blinds):
            c = commit(value, blind)
            tx.add_output(Output(OutputFeatures.PLAIN, c, OutputProof.create(value, blind, c)))

        excess = blind_sum(out_blinds, in_blinds + [offset])
        kernel = TxKernel.empty(fee)
        kernel.excess = pubkey_from_secret(excess).to_commitment()
        kernel.excess_sig = sign(kernel.msg_to_sign(), excess, random_scalar())
        tx.body.kernels.append(kernel)

        assert len(tx.body.inputs) == n_inputs
        assert len(tx.body.outputs) == n_outputs
        assert tx.validate() == []

    def test_transaction_dict_round_trip(self):
        tx = Transaction.empty(fee=8_000_000)
        tx.offset = random_scalar()
        restored = Transaction.from_dict(tx.to_dict())
        assert restored.offset == tx.offset
        assert restored.kernel.fee == 8_000_000

    def test_transaction_bad_offset_rejected(self):
        data = Transaction.empty().to_dict()
        data["offset"] = "zz"
        with pytest.raises(InvalidSlate):
            Transaction.from_dict(data)


# =============================================================================
# AGGREGATOR
# =============================================================================

def _shares(count, msg):
    keys = [random_scalar() for _ in range(count)]
    nonces = [random_scalar() for _ in range(count)]
    pubkeys = [pubkey_from_secret(k) for k in keys]
    pubnonces = [pubkey_from_secret(k) for k in nonces]
    nonce_sum = sum_pubkeys(pubnonces)
    key_sum = sum_pubkeys(pubkeys)
    shares = []
    for i in range(count):
        sig = aggregator.calculate_partial_signature(keys[i], nonces[i], nonce_sum, key_sum, msg)
        shares.append(SignatureShare(i, pubnonces[i], pubkeys[i], sig))
    return shares, keys


class TestAggregator:
    """Tests for partial signature verification and aggregation."""

    @pytest.mark.parametrize("count", [2, 3, 5])
    def test_partials_aggregate_to_valid_signature(self, count):
        msg = kernel_sig_msg(KernelFeatures.PLAIN, 8_000_000, 0)
        shares, keys = _shares(count, msg)
        result = aggregator.aggregate(shares, msg)
        assert verify(result.signature, msg, pubkey_from_secret(sum(keys) % N))
        assert result.public_excess == aggregator.aggregate_public_key(shares)

    def test_each_partial_verifies(self):
        msg = hash_message("kernel")
        shares, _ = _shares(2, msg)
        nonce_sum = aggregator.aggregate_nonce(shares)
        key_sum = aggregator.aggregate_public_key(shares)
        for share in shares:
            assert aggregator.verify_partial_signature(
                share.part_sig, share.public_nonce, share.public_blind_excess, nonce_sum, key_sum, msg,
            )

    def test_bad_partial_names_participant(self):
        msg = hash_message("kernel")
        shares, _ = _shares(3, msg)
        bad = SignatureShare(1, shares[1].public_nonce, shares[1].public_blind_excess,
                             Signature(shares[1].part_sig.r, (shares[1].part_sig.s + 1) % N))
        shares[1] = bad
        with pytest.raises(InvalidPartialSignature) as exc:
            aggregator.aggregate(shares, msg, slate_id="s")
        assert exc.value.participant_id == 1
        assert exc.value.details["slate_id"] == "s"

    def test_missing_partial_rejected(self):
        msg = hash_message("kernel")
        shares, _ = _shares(2, msg)
        shares[0] = SignatureShare(0, shares[0].public_nonce, shares[0].public_blind_excess)
        with pytest.raises(InvalidPartialSignature) as exc:
            aggregator.aggregate(shares, msg)
        assert exc.value.participant_id == 0

    def test_verify_skips_unsigned_and_listed(self):
        msg = hash_message("kernel")
        shares, _ = _shares(2, msg)
        unsigned = SignatureShare(1, shares[1].public_nonce, shares[1].public_blind_excess)
        aggregator.verify_partial_signatures([shares[0], unsigned], msg)
        tampered = SignatureShare(0, shares[0].public_nonce, shares[0].public_blind_excess, Signature.zero())
        aggregator.verify_partial_signatures([tampered, shares[1]], msg, skip=[0])
