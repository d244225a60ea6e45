"""
Negotiation Flow Tests

End-to-end negotiations between independent wallets sharing one in-memory
ledger:

- Send: init → lock → receive → finalize → post → confirm
- Invoice: issue → process → finalize → post
- N-party send with a second signing pass
- Validation of incoming slates (expiry, duplicates, tampering)
- Kernel sum and fee checks on the finished transaction

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from mwslate.builder import BlockFees, InitTxArgs, IssueInvoiceTxArgs
from mwslate.errors import (
    InsufficientFunds,
    InvalidPartialSignature,
    InvalidSlate,
    InvalidSlateMessage,
    KernelSumMismatch,
    LedgerUnavailable,
    NegotiationNotFound,
    ParticipantCountMismatch,
    ParticipantIdCollision,
)
from mwslate.records import NegotiationState, OutputStatus, TxLogEntryType
from mwslate.secp import N, OutputProof, Signature, commit, random_scalar
from mwslate.transaction import Output, OutputFeatures

REWARD = 60_000_000_000
AMOUNT = 6_000_000_000
FEE = 8_000_000


def _entry(wallet, slate_id):
    return wallet.store.find_tx_log_entry(slate_id)


def _spendable(wallet):
    _, info = wallet.driver.retrieve_summary_info(refresh_from_node=True, minimum_confirmations=1)
    return info.amount_currently_spendable


# =============================================================================
# COINBASE
# =============================================================================

class TestCoinbase:
    """Tests for funding a wallet from block rewards."""

    def test_coinbase_output_and_kernel_verify(self, alice):
        result = alice.driver.build_coinbase(BlockFees(fees=1_000, height=1))
        assert result.output.verify_proof()
        assert result.kernel.verify()
        assert result.output.features == OutputFeatures.COINBASE
        stored = alice.store.get_output(result.output.commit.hex())
        assert stored.value == REWARD + 1_000
        assert stored.lock_height == 1 + 3
        assert stored.is_coinbase

    def test_coinbase_entry_is_posted(self, alice):
        alice.driver.build_coinbase(BlockFees(fees=0, height=1))
        entry = alice.store.tx_log_entries()[0]
        assert entry.tx_type == TxLogEntryType.CONFIRMED_COINBASE
        assert entry.state == NegotiationState.POSTED

    def test_immature_coinbase_not_spendable(self, alice, ledger):
        reward = alice.driver.build_coinbase(BlockFees(fees=0, height=1))
        ledger.add_coinbase(reward.output, reward.kernel)
        ledger.mine_block()
        _, info = alice.driver.retrieve_summary_info(True, 1)
        assert info.amount_immature == REWARD
        assert info.amount_currently_spendable == 0
        with pytest.raises(InsufficientFunds):
            alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))

    def test_matured_coinbase_spendable(self, funded_alice):
        assert _spendable(funded_alice) == REWARD
        entry = funded_alice.store.tx_log_entries()[0]
        assert entry.confirmed


# =============================================================================
# SEND FLOW
# =============================================================================

class TestSendFlow:
    """Tests for the two-party payment flow."""

    def test_full_send(self, funded_alice, bob, ledger):
        alice = funded_alice
        slate = alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, message="rent"))
        assert slate.fee == FEE
        assert _entry(alice, slate.id).state == NegotiationState.CREATED

        alice.driver.tx_lock_outputs(slate, 0)
        assert _entry(alice, slate.id).state == NegotiationState.AWAITING_CONTRIBUTION
        assert len(alice.driver.locker.locked_outputs()) == 1

        slate = bob.driver.receive_tx(slate, message="thanks")
        assert slate.participant(1).part_sig is not None
        assert _entry(bob, slate.id).state == NegotiationState.AWAITING_CONTRIBUTION

        slate = alice.driver.finalize_tx(slate)
        tx = slate.tx
        assert tx.kernel.is_complete
        assert tx.validate() == []
        assert _entry(alice, slate.id).state == NegotiationState.FINALIZED
        assert alice.store.get_context(slate.id, 0) is None

        alice.driver.post_tx(tx)
        assert _entry(alice, slate.id).state == NegotiationState.POSTED
        assert ledger.mempool()

        height = ledger.mine_block()
        assert not ledger.is_unspent(tx.body.inputs[0].commit.hex())
        assert all(ledger.stored_output(o.commit.hex())[0] == height for o in tx.body.outputs)
        assert _spendable(bob) == AMOUNT
        assert _spendable(alice) == REWARD - AMOUNT - FEE
        assert _entry(alice, slate.id).confirmed
        assert _entry(bob, slate.id).confirmed

        _, outputs = alice.driver.retrieve_outputs(include_spent=True, refresh_from_node=False)
        statuses = sorted(o.status.value for o in outputs)
        assert statuses == ["Spent", "Unspent"]

    def test_finalize_without_prior_lock_locks_inputs(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        slate = funded_alice.driver.finalize_tx(slate)
        entry = _entry(funded_alice, slate.id)
        assert entry.state == NegotiationState.FINALIZED
        states = [h["to_state"] for h in entry.state_history]
        assert states == ["awaiting_contribution", "ready_to_aggregate", "finalized"]
        assert len(funded_alice.driver.locker.locked_outputs(entry.id)) == 1

    def test_kernel_sums_balance(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = funded_alice.driver.finalize_tx(bob.driver.receive_tx(slate))
        tx = slate.tx
        assert tx.sum_commitments() == tx.sum_kernel_excesses()
        assert tx.kernel.excess == slate.pub_blind_sum().to_commitment()
        assert tx.fee() == tx.weight_fee()

    def test_stored_tx_matches_finalized(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = funded_alice.driver.finalize_tx(bob.driver.receive_tx(slate))
        entry = _entry(funded_alice, slate.id)
        stored = funded_alice.driver.get_stored_tx(entry.id)
        assert stored.to_dict() == slate.tx.to_dict()

    def test_second_finalize_fails(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        received = bob.driver.receive_tx(slate)
        funded_alice.driver.finalize_tx(received)
        with pytest.raises(NegotiationNotFound):
            funded_alice.driver.finalize_tx(received)

    def test_estimate_only_persists_nothing(self, funded_alice):
        before = funded_alice.store.tx_log_entries()
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, estimate_only=True))
        assert slate.fee == FEE
        assert slate.participant_data == []
        assert funded_alice.store.tx_log_entries() == before
        assert funded_alice.driver.locker.locked_outputs() == []

    def test_insufficient_funds(self, funded_alice):
        with pytest.raises(InsufficientFunds) as exc:
            funded_alice.driver.init_send_tx(InitTxArgs(amount=REWARD))
        assert exc.value.details["available"] == REWARD
        assert exc.value.details["needed"] == REWARD + FEE

    def test_multiple_change_outputs(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, num_change_outputs=3))
        assert slate.fee == 16_000_000
        assert len(slate.tx.body.outputs) == 3
        slate = funded_alice.driver.finalize_tx(bob.driver.receive_tx(slate))
        assert slate.tx.validate() == []

    def test_post_failure_leaves_finalized(self, funded_alice, bob, ledger):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = funded_alice.driver.finalize_tx(bob.driver.receive_tx(slate))
        ledger.available = False
        with pytest.raises(LedgerUnavailable):
            funded_alice.driver.post_tx(slate.tx)
        assert _entry(funded_alice, slate.id).state == NegotiationState.FINALIZED

        ledger.available = True
        funded_alice.driver.post_tx(slate.tx, fluff=True)
        assert _entry(funded_alice, slate.id).state == NegotiationState.POSTED
        assert ledger.posted[-1][1] is True


# =============================================================================
# INCOMING SLATE CHECKS
# =============================================================================

class TestIncomingChecks:
    """Tests for the checks a participant runs on a slate it is handed."""

    def test_duplicate_receive_rejected(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        bob.driver.receive_tx(slate)
        with pytest.raises(InvalidSlate):
            bob.driver.receive_tx(slate)

    def test_receive_as_payer_id_rejected(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        with pytest.raises(ParticipantIdCollision):
            bob.driver.receive_tx(slate, participant_id=0)

    def test_receive_on_full_slate_rejected(self, funded_alice, bob, carol):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        with pytest.raises(ParticipantCountMismatch):
            carol.driver.receive_tx(slate)

    def test_expired_slate_rejected(self, funded_alice, bob, ledger):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, ttl_blocks=2))
        assert slate.ttl_cutoff_height == slate.height + 2
        ledger.mine_block(3)
        bob.driver.refresh()
        with pytest.raises(InvalidSlate) as exc:
            bob.driver.receive_tx(slate)
        assert exc.value.path == "ttl_cutoff_height"

    def test_tampered_message_rejected_at_finalize(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, message="rent"))
        slate = bob.driver.receive_tx(slate, message="thanks")
        slate.participant(1).message = "pay me twice"
        with pytest.raises(InvalidSlateMessage) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.participant_ids == [1]
        assert _entry(funded_alice, slate.id).state == NegotiationState.CREATED

    def test_verify_slate_messages(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, message="rent"))
        slate = bob.driver.receive_tx(slate, message="thanks")
        funded_alice.driver.verify_slate_messages(slate)
        slate.participant(0).message = "rant"
        with pytest.raises(InvalidSlateMessage):
            funded_alice.driver.verify_slate_messages(slate)

    def test_forged_partial_signature_rejected(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        sig = slate.participant(1).part_sig
        slate.participant(1).part_sig = Signature(sig.r, (sig.s + 1) % N)
        with pytest.raises(InvalidPartialSignature) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.participant_id == 1
        assert funded_alice.store.get_context(slate.id, 0) is not None
        assert funded_alice.driver.locker.locked_outputs() == []

    def test_dropped_input_rejected(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        slate.tx.body.inputs.clear()
        with pytest.raises(InvalidSlate) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.path == "tx.body"

    def test_altered_fee_rejected(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        slate.fee = FEE - 1
        with pytest.raises(InvalidSlate) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.path == "fee"

    def test_injected_output_fails_kernel_sum(self, funded_alice, bob):
        """An output nobody accounted for leaves the excess unbalanced."""
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        slate = bob.driver.receive_tx(slate)
        blind = random_scalar()
        extra = commit(1_000, blind)
        slate.tx.add_output(Output(OutputFeatures.PLAIN, extra, OutputProof.create(1_000, blind, extra)))
        with pytest.raises(KernelSumMismatch):
            funded_alice.driver.finalize_tx(slate)
        entry = _entry(funded_alice, slate.id)
        assert entry.state == NegotiationState.CREATED
        assert entry.stored_tx is None


# =============================================================================
# INVOICE FLOW
# =============================================================================

class TestInvoiceFlow:
    """Tests for the payee-initiated flow."""

    def test_full_invoice(self, funded_alice, bob, ledger):
        invoice = bob.driver.issue_invoice_tx(IssueInvoiceTxArgs(amount=AMOUNT, message="invoice #7"))
        assert invoice.participant_ids() == [1]
        assert _entry(bob, invoice.id).tx_type == TxLogEntryType.TX_RECEIVED

        paid = funded_alice.driver.process_invoice_tx(invoice, InitTxArgs(amount=AMOUNT, lock_outputs=True))
        assert paid.fee == FEE
        assert paid.participant(0).part_sig is not None
        payer_entry = _entry(funded_alice, invoice.id)
        assert payer_entry.tx_type == TxLogEntryType.TX_SENT
        assert payer_entry.state == NegotiationState.AWAITING_CONTRIBUTION

        final = bob.driver.finalize_invoice_tx(paid)
        assert final.tx.validate() == []
        assert _entry(bob, invoice.id).state == NegotiationState.FINALIZED

        bob.driver.post_tx(final.tx)
        ledger.mine_block()
        assert _spendable(bob) == AMOUNT
        assert _spendable(funded_alice) == REWARD - AMOUNT - FEE
        assert _entry(funded_alice, invoice.id).confirmed

    def test_invoice_amount_mismatch(self, funded_alice, bob):
        invoice = bob.driver.issue_invoice_tx(IssueInvoiceTxArgs(amount=AMOUNT))
        with pytest.raises(InvalidSlate) as exc:
            funded_alice.driver.process_invoice_tx(invoice, InitTxArgs(amount=AMOUNT + 1))
        assert exc.value.path == "amount"

    def test_invoice_cannot_be_finalized_as_send(self, funded_alice, bob):
        invoice = bob.driver.issue_invoice_tx(IssueInvoiceTxArgs(amount=AMOUNT))
        paid = funded_alice.driver.process_invoice_tx(invoice, InitTxArgs(amount=AMOUNT))
        with pytest.raises(NegotiationNotFound):
            bob.driver.finalize_tx(paid)

    def test_invoice_processed_once(self, funded_alice, bob):
        invoice = bob.driver.issue_invoice_tx(IssueInvoiceTxArgs(amount=AMOUNT))
        funded_alice.driver.process_invoice_tx(invoice, InitTxArgs(amount=AMOUNT))
        with pytest.raises(InvalidSlate):
            funded_alice.driver.process_invoice_tx(invoice, InitTxArgs(amount=AMOUNT))


# =============================================================================
# N-PARTY
# =============================================================================

class TestMultiParty:
    """Tests for negotiations with more than two participants."""

    def test_three_party_send(self, funded_alice, bob, carol, ledger):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, num_participants=3))
        assert slate.fee == 12_000_000

        slate = bob.driver.receive_tx(slate)
        assert slate.participant(1).part_sig is None
        assert bob.store.get_context(slate.id, 1) is not None

        slate = carol.driver.receive_tx(slate)
        assert slate.participant(2).part_sig is not None

        slate = bob.driver.sign_tx(slate, 1)
        assert slate.participant(1).part_sig is not None
        assert bob.store.get_context(slate.id, 1) is None

        final = funded_alice.driver.finalize_tx(slate)
        assert final.tx.validate() == []
        assert len(final.tx.body.outputs) == 3

        funded_alice.driver.post_tx(final.tx)
        ledger.mine_block()
        assert _spendable(bob) == AMOUNT // 2
        assert _spendable(carol) == AMOUNT // 2

    def test_uneven_amount_remainder_goes_to_first_receiver(self, funded_alice, bob, carol):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT + 1, num_participants=3))
        slate = carol.driver.receive_tx(bob.driver.receive_tx(slate))
        _, bob_outputs = bob.driver.retrieve_outputs(refresh_from_node=False)
        _, carol_outputs = carol.driver.retrieve_outputs(refresh_from_node=False)
        assert bob_outputs[0].value == AMOUNT // 2 + 1
        assert carol_outputs[0].value == AMOUNT // 2

    def test_finalize_with_missing_participant(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, num_participants=3))
        slate = bob.driver.receive_tx(slate)
        with pytest.raises(ParticipantCountMismatch) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.expected == 3

    def test_finalize_with_unsigned_participant(self, funded_alice, bob, carol):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, num_participants=3))
        slate = carol.driver.receive_tx(bob.driver.receive_tx(slate))
        with pytest.raises(ParticipantCountMismatch) as exc:
            funded_alice.driver.finalize_tx(slate)
        assert exc.value.details["missing_part_sig"] == [1]

    def test_sign_without_context(self, funded_alice, bob, carol):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT, num_participants=3))
        slate = carol.driver.receive_tx(bob.driver.receive_tx(slate))
        with pytest.raises(NegotiationNotFound):
            carol.driver.sign_tx(slate, 1)

    def test_payer_outputs_unconfirmed_until_mined(self, funded_alice, bob):
        slate = funded_alice.driver.init_send_tx(InitTxArgs(amount=AMOUNT))
        entry = _entry(funded_alice, slate.id)
        _, outputs = funded_alice.driver.retrieve_outputs(refresh_from_node=False, tx_id=entry.id)
        change = [o for o in outputs if o.tx_log_entry == entry.id]
        assert len(change) == 1
        assert change[0].status == OutputStatus.UNCONFIRMED
        assert change[0].value == REWARD - AMOUNT - FEE
