"""
Round Driver

Orchestrates a negotiation from the first contribution to broadcast. Each
public operation validates what it was handed, mutates a private copy of the
slate, and persists its store changes inside one critical section, so a
failure leaves neither a half-filled slate nor half-written records behind.

Send flow:

    payer                         payee                        payer
    init_send_tx ──► slate ──►    receive_tx ──► slate ──►     finalize_tx ──► post_tx
    tx_lock_outputs

Invoice flow:

    payee                         payer                        payee
    issue_invoice_tx ──► slate ─► process_invoice_tx ─► slate ─► finalize_invoice_tx ──► post_tx
                                  tx_lock_outputs

Negotiation state per local log entry:

    CREATED ──► AWAITING_CONTRIBUTION ──► READY_TO_AGGREGATE ──► FINALIZED ──► POSTED
       │                 │                        │                  │
       └─────────────────┴────────────────────────┴──────────────────┴──► CANCELLED

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from mwslate.config import WalletConfig, get_config
from mwslate.context import ParticipantContext, ParticipantRole
from mwslate.errors import (
    AlreadyPosted,
    InvalidSlate,
    LedgerUnavailable,
    NegotiationNotFound,
    ParticipantCountMismatch,
    ParticipantIdCollision,
    SlateVersionMismatch,
)
from mwslate.hardening import InvariantChecker, Validators, utc_now_iso
from mwslate.interfaces import Keychain, LedgerClient, WalletStore
from mwslate.locker import OutputLocker
from mwslate.observability import (
    AuditLogger,
    Tracer,
    WalletLayer,
    get_logger,
    get_tracer,
    timed_operation,
)
from mwslate.records import (
    VALID_TRANSITIONS,
    Identifier,
    NegotiationState,
    OutputData,
    OutputStatus,
    ParticipantMessage,
    TxLogEntry,
    TxLogEntryType,
    WalletInfo,
)
from mwslate.secp import Commitment, blind_sum, pubkey_from_secret, random_scalar, sign
from mwslate.selection import STRATEGIES, SelectionResult, select_coins
from mwslate.slate import Slate
from mwslate.transaction import KernelFeatures, Output, OutputFeatures, Transaction, TxKernel, kernel_sig_msg

logger = get_logger("builder", WalletLayer.BUILDER)


# =============================================================================
# ARGUMENTS
# =============================================================================

def _opt_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    return Validators.validate_u64(value, key, allow_numeric=True).unwrap()


@dataclass
class InitTxArgs:
    """
    Parameters of an outgoing negotiation. ``None`` falls back to configuration.

    ``src_acct_name`` is accepted on the wire and ignored; the wallet has a
    single account.
    """
    amount: int
    minimum_confirmations: Optional[int] = None
    max_outputs: Optional[int] = None
    num_change_outputs: Optional[int] = None
    selection_strategy: Optional[str] = None
    message: Optional[str] = None
    target_slate_version: Optional[int] = None
    estimate_only: bool = False
    num_participants: Optional[int] = None
    ttl_blocks: Optional[int] = None
    lock_outputs: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InitTxArgs":
        strategy = data.get("selection_strategy")
        use_all = data.get("selection_strategy_is_use_all")
        if strategy is None and use_all is not None:
            strategy = "all" if use_all else "smallest"
        return cls(
            amount=Validators.validate_u64(data.get("amount"), "amount", allow_numeric=True).unwrap(),
            minimum_confirmations=_opt_int(data, "minimum_confirmations"),
            max_outputs=_opt_int(data, "max_outputs"),
            num_change_outputs=_opt_int(data, "num_change_outputs"),
            selection_strategy=strategy,
            message=data.get("message"),
            target_slate_version=data.get("target_slate_version"),
            estimate_only=bool(data.get("estimate_only") or False),
            num_participants=data.get("num_participants"),
            ttl_blocks=_opt_int(data, "ttl_blocks"),
            lock_outputs=bool(data.get("lock_outputs") or False),
        )


@dataclass
class IssueInvoiceTxArgs:
    """Parameters of an invoice. ``dest_acct_name`` is accepted on the wire and ignored."""
    amount: int
    message: Optional[str] = None
    target_slate_version: Optional[int] = None
    ttl_blocks: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssueInvoiceTxArgs":
        return cls(
            amount=Validators.validate_u64(data.get("amount"), "amount", allow_numeric=True).unwrap(),
            message=data.get("message"),
            target_slate_version=data.get("target_slate_version"),
            ttl_blocks=_opt_int(data, "ttl_blocks"),
        )


@dataclass
class BlockFees:
    """Inputs to a coinbase build: collected fees, block height and an optional key id."""
    fees: int
    height: int
    key_id: Optional[Identifier] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockFees":
        key_id = data.get("key_id")
        return cls(
            fees=Validators.validate_u64(data.get("fees"), "block_fees.fees", allow_numeric=True).unwrap(),
            height=Validators.validate_u64(data.get("height"), "block_fees.height", allow_numeric=True).unwrap(),
            key_id=Identifier.from_hex(key_id) if key_id else None,
        )


@dataclass
class CoinbaseResult:
    output: Output
    kernel: TxKernel
    key_id: Identifier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kernel": self.kernel.to_dict(),
            "key_id": self.key_id.hex(),
            "output": self.output.to_dict(),
        }


# =============================================================================
# ROUND DRIVER
# =============================================================================

class RoundDriver:
    """
    One wallet's side of every negotiation it takes part in.

    The driver owns no state of its own: outputs, log entries and contexts
    live in the store, keys come from the keychain and chain facts from the
    ledger client.
    """

    def __init__(
        self,
        keychain: Keychain,
        store: WalletStore,
        ledger: LedgerClient,
        config: Optional[WalletConfig] = None,
        tracer: Optional[Tracer] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.keychain = keychain
        self.store = store
        self.ledger = ledger
        self.config = config or get_config()
        self.tracer = tracer or get_tracer()
        self.locker = OutputLocker(store, audit)
        self.audit = self.locker.audit

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @property
    def base_fee(self) -> int:
        return self.config.chain.base_fee.get()

    def _height(self) -> int:
        return self.store.last_confirmed_height()

    def _context(self, slate_id: str, participant_id: int) -> ParticipantContext:
        context = self.store.get_context(slate_id, participant_id)
        if context is None:
            raise NegotiationNotFound(slate_id=slate_id, participant_id=participant_id)
        return context

    def _entry(self, context: ParticipantContext) -> TxLogEntry:
        entry = self.store.get_tx_log_entry(context.tx_log_id) if context.tx_log_id is not None else None
        if entry is None:
            raise NegotiationNotFound(tx_id=context.tx_log_id, slate_id=context.slate_id)
        return entry

    def _check_incoming(self, slate: Slate) -> None:
        max_header = self.config.chain.block_header_version.get()
        if slate.version_info.block_header_version > max_header:
            raise SlateVersionMismatch(
                slate.version_info.block_header_version,
                range(1, max_header + 1),
                field="block_header_version",
                slate_id=slate.id,
            )
        if slate.ttl_cutoff_height is not None and self._height() >= slate.ttl_cutoff_height:
            raise InvalidSlate(
                f"Slate expired at height {slate.ttl_cutoff_height}",
                path="ttl_cutoff_height",
                slate_id=slate.id,
                height=self._height(),
            )

    def _check_contribution(self, slate: Slate, context: ParticipantContext) -> None:
        """The slate must still carry every input and output this participant added."""
        inputs = {i.commit.hex() for i in slate.tx.body.inputs}
        outputs = {o.commit.hex() for o in slate.tx.body.outputs}
        missing = [c for c in context.input_commits if c not in inputs]
        missing += [c for c in context.output_commits if c not in outputs]
        if missing:
            raise InvalidSlate(
                "Slate no longer carries this participant's inputs or outputs",
                path="tx.body",
                slate_id=slate.id,
                missing=missing,
            )
        if slate.amount != context.amount and context.role == ParticipantRole.PAYER:
            raise InvalidSlate("Slate amount was altered", path="amount", slate_id=slate.id)
        if context.fee and slate.fee != context.fee:
            raise InvalidSlate("Slate fee was altered", path="fee", slate_id=slate.id)

    def _new_output(
        self,
        store: WalletStore,
        value: int,
        tx_log_id: int,
        features: OutputFeatures = OutputFeatures.PLAIN,
        key_id: Optional[Identifier] = None,
        height: int = 0,
        lock_height: int = 0,
    ) -> Tuple[Output, OutputData, int]:
        key_id = key_id or store.next_child()
        blind = self.keychain.derive_key(value, key_id)
        commitment = self.keychain.commit(value, key_id)
        output = Output(features, commitment, self.keychain.create_proof(value, key_id, commitment))
        data = OutputData(
            commit=commitment.hex(),
            key_id=key_id,
            value=value,
            status=OutputStatus.UNCONFIRMED,
            height=height,
            lock_height=lock_height,
            is_coinbase=features == OutputFeatures.COINBASE,
            tx_log_entry=tx_log_id,
        )
        store.save_output(data)
        return output, data, blind


    def _add_inputs_and_change(
        self,
        store: WalletStore,
        slate: Slate,
        selection: SelectionResult,
        tx_log_id: int,
    ) -> Tuple[int, List[OutputData]]:
        """Add selected inputs and fresh change outputs; return the payer's excess."""
        input_blinds = []
        for output in selection.inputs:
            features = OutputFeatures.COINBASE if output.is_coinbase else OutputFeatures.PLAIN
            slate.tx.add_input(features, Commitment.from_hex(output.commit))
            input_blinds.append(self.keychain.derive_key(output.value, output.key_id))

        change_blinds = []
        change: List[OutputData] = []
        for value in selection.change_amounts:
            out, data, blind = self._new_output(store, value, tx_log_id)
            slate.tx.add_output(out)
            change_blinds.append(blind)
            change.append(data)
        return blind_sum(change_blinds, input_blinds), change

    @staticmethod
    def _messages(slate: Slate) -> List[ParticipantMessage]:
        return [
            ParticipantMessage(
                id=pd.id,
                public_key=pd.public_blind_excess.hex(),
                message=pd.message,
                message_sig=pd.message_sig.hex() if pd.message_sig is not None else None,
            )
            for pd in slate.participant_data
        ]

    @staticmethod
    def _receiver_share(slate: Slate, participant_id: int) -> int:
        """Receiver 1 takes the remainder when the amount does not split evenly."""
        receivers = slate.num_participants - 1
        each = slate.amount // receivers
        if participant_id == 1:
            return slate.amount - each * (receivers - 1)
        return each

    def _selection_args(self, args: InitTxArgs) -> Tuple[int, int, int, str]:
        sel = self.config.selection
        strategy = args.selection_strategy or sel.strategy.get()
        if strategy not in STRATEGIES:
            raise InvalidSlate(
                f"Unknown selection strategy {strategy!r}; expected one of {STRATEGIES}",
                path="selection_strategy",
            )
        num_change = (
            args.num_change_outputs if args.num_change_outputs is not None
            else sel.num_change_outputs.get()
        )
        if num_change < 1:
            raise InvalidSlate("num_change_outputs must be at least 1", path="num_change_outputs")
        return (
            args.minimum_confirmations if args.minimum_confirmations is not None
            else sel.minimum_confirmations.get(),
            args.max_outputs or sel.max_outputs.get(),
            num_change,
            strategy,
        )

    def _lock_entry(self, entry_id: int, context: ParticipantContext) -> None:
        with self.locker.critical_section() as store:
            self.locker.lock(entry_id, context.input_commits)
            entry = store.get_tx_log_entry(entry_id)
            if entry.state == NegotiationState.CREATED:
                entry.transition(NegotiationState.AWAITING_CONTRIBUTION)
                store.save_tx_log_entry(entry)

    # -------------------------------------------------------------------------
    # Payer: send
    # -------------------------------------------------------------------------

    def init_send_tx(self, args: InitTxArgs) -> Slate:
        """
        Start a payment as participant 0: select inputs, create change
        outputs, choose the offset and publish round-one data.

        With ``estimate_only`` nothing is persisted and the returned slate
        only carries amount and fee. With ``lock_outputs`` the selected
        inputs are locked in the same critical section as the selection, so
        concurrent negotiations can never pick the same output.
        """
        if args.amount <= 0:
            raise InvalidSlate("Amount must be positive", path="amount")
        min_conf, max_outputs, num_change, strategy = self._selection_args(args)
        num_participants = args.num_participants or self.config.slate.num_participants.get()

        with self.tracer.span("init_send_tx", WalletLayer.BUILDER, amount=args.amount) as span:
            self.refresh()
            height = self._height()

            with self.locker.critical_section() as store:
                selection = select_coins(
                    store.iter_outputs(),
                    args.amount,
                    height,
                    min_conf,
                    max_outputs,
                    num_change,
                    strategy,
                    self.base_fee,
                    num_recipient_outputs=num_participants - 1,
                )
                slate = Slate.blank(
                    num_participants,
                    amount=args.amount,
                    fee=selection.fee,
                    height=height,
                    ttl_cutoff_height=height + args.ttl_blocks if args.ttl_blocks else None,
                )
                if args.estimate_only:
                    span.set_attribute("estimate_only", True)
                    return slate
                slate.update_kernel()

                tx_id = store.next_tx_log_id()
                sec_key, change = self._add_inputs_and_change(store, slate, selection, tx_id)
                context = ParticipantContext.create(
                    slate.id,
                    0,
                    ParticipantRole.PAYER,
                    sec_key,
                    tx_log_id=tx_id,
                    fee=selection.fee,
                    amount=args.amount,
                    input_ids=[(o.key_id, o.value) for o in selection.inputs],
                    output_ids=[(o.key_id, o.value) for o in change],
                    input_commits=[o.commit for o in selection.inputs],
                    output_commits=[o.commit for o in change],
                    message=args.message,
                )
                slate.generate_offset(context)
                slate.fill_round_1(context, args.message)

                store.save_tx_log_entry(TxLogEntry(
                    id=tx_id,
                    tx_type=TxLogEntryType.TX_SENT,
                    tx_slate_id=slate.id,
                    amount_debited=selection.total,
                    amount_credited=selection.change,
                    num_inputs=len(selection.inputs),
                    num_outputs=len(change),
                    fee=selection.fee,
                    ttl_cutoff_height=slate.ttl_cutoff_height,
                    messages=self._messages(slate),
                ))
                store.save_context(context)
                if args.lock_outputs:
                    self._lock_entry(tx_id, context)

            span.set_attribute("slate_id", slate.id)
            span.set_attribute("tx_id", tx_id)

        logger.info("Started send", slate_id=slate.id, tx_id=tx_id, amount=args.amount, fee=selection.fee)
        return slate

    def tx_lock_outputs(self, slate: Slate, participant_id: int = 0) -> None:
        """
        Reserve this participant's inputs for the negotiation. A second call
        for the same negotiation changes nothing; inputs held by another
        negotiation raise OutputConflict.
        """
        with self.tracer.span("tx_lock_outputs", WalletLayer.BUILDER, slate_id=slate.id):
            context = self._context(slate.id, participant_id)
            entry = self._entry(context)
            if entry.state.is_terminal() or entry.state == NegotiationState.FINALIZED:
                InvariantChecker.check_state_transition(
                    entry.state, NegotiationState.AWAITING_CONTRIBUTION, VALID_TRANSITIONS, tx_id=entry.id,
                )
            self._lock_entry(entry.id, context)

    # -------------------------------------------------------------------------
    # Payee: receive
    # -------------------------------------------------------------------------

    def receive_tx(
        self,
        slate: Slate,
        message: Optional[str] = None,
        participant_id: Optional[int] = None,
    ) -> Slate:
        """
        Add this wallet's output and round-one data to an incoming payment.
        Once every participant has published, the partial signature is added
        too; otherwise :meth:`sign_tx` produces it in a later pass.
        """
        with self.tracer.span("receive_tx", WalletLayer.BUILDER, slate_id=slate.id) as span:
            self._check_incoming(slate)
            if self.store.find_tx_log_entry(slate.id) is not None:
                raise InvalidSlate("Slate was already received by this wallet", path="id", slate_id=slate.id)
            work = slate.copy()
            pid = work.next_participant_id() if participant_id is None else participant_id
            if work.participant(pid) is not None:
                raise ParticipantIdCollision(pid, slate_id=work.id)
            if len(work.participant_data) >= work.num_participants:
                raise ParticipantCountMismatch(
                    work.num_participants, len(work.participant_data) + 1, slate_id=work.id,
                )
            if work.participant(0) is None:
                raise InvalidSlate("Payment carries no payer contribution", path="participant_data")
            if pid == 0:
                raise ParticipantIdCollision(pid, slate_id=work.id)

            value = self._receiver_share(work, pid)
            with self.locker.critical_section() as store:
                tx_id = store.next_tx_log_id()
                output, data, blind = self._new_output(store, value, tx_id)
                work.tx.add_output(output)
                context = ParticipantContext.create(
                    work.id,
                    pid,
                    ParticipantRole.PAYEE,
                    blind,
                    tx_log_id=tx_id,
                    fee=work.fee,
                    amount=value,
                    output_ids=[(data.key_id, value)],
                    output_commits=[data.commit],
                    message=message,
                )
                work.fill_round_1(context, message)
                signed = len(work.participant_data) == work.num_participants
                if signed:
                    work.fill_round_2(context)

                entry = TxLogEntry(
                    id=tx_id,
                    tx_type=TxLogEntryType.TX_RECEIVED,
                    tx_slate_id=work.id,
                    amount_credited=value,
                    num_outputs=1,
                    ttl_cutoff_height=work.ttl_cutoff_height,
                    messages=self._messages(work),
                )
                entry.transition(NegotiationState.AWAITING_CONTRIBUTION)
                store.save_tx_log_entry(entry)
                if not signed:
                    store.save_context(context)

            span.set_attribute("participant_id", pid)
            span.set_attribute("signed", signed)

        logger.info("Received payment", slate_id=work.id, tx_id=tx_id, participant_id=pid, amount=value)
        return work

    def sign_tx(self, slate: Slate, participant_id: int) -> Slate:
        """
        Second pass for a participant that published round-one data before
        the participant set was complete.
        """
        with self.tracer.span("sign_tx", WalletLayer.BUILDER, slate_id=slate.id, participant_id=participant_id):
            self._check_incoming(slate)
            context = self._context(slate.id, participant_id)
            work = slate.copy()
            self._check_contribution(work, context)
            work.fill_round_2(context)
            if context.role == ParticipantRole.PAYEE:
                self.store.delete_context(work.id, participant_id)
        logger.info("Signed", slate_id=work.id, participant_id=participant_id)
        return work

    # -------------------------------------------------------------------------
    # Invoice
    # -------------------------------------------------------------------------

    def issue_invoice_tx(self, args: IssueInvoiceTxArgs) -> Slate:
        """Request a payment as participant 1: the payee publishes first."""
        if args.amount <= 0:
            raise InvalidSlate("Amount must be positive", path="amount")

        with self.tracer.span("issue_invoice_tx", WalletLayer.BUILDER, amount=args.amount) as span:
            self.refresh()
            height = self._height()
            slate = Slate.blank(
                2,
                amount=args.amount,
                height=height,
                ttl_cutoff_height=height + args.ttl_blocks if args.ttl_blocks else None,
            )
            slate.update_kernel()

            with self.locker.critical_section() as store:
                tx_id = store.next_tx_log_id()
                output, data, blind = self._new_output(store, args.amount, tx_id)
                slate.tx.add_output(output)
                context = ParticipantContext.create(
                    slate.id,
                    1,
                    ParticipantRole.PAYEE,
                    blind,
                    is_invoice=True,
                    tx_log_id=tx_id,
                    amount=args.amount,
                    output_ids=[(data.key_id, args.amount)],
                    output_commits=[data.commit],
                    message=args.message,
                )
                slate.fill_round_1(context, args.message)

                entry = TxLogEntry(
                    id=tx_id,
                    tx_type=TxLogEntryType.TX_RECEIVED,
                    tx_slate_id=slate.id,
                    amount_credited=args.amount,
                    num_outputs=1,
                    ttl_cutoff_height=slate.ttl_cutoff_height,
                    messages=self._messages(slate),
                )
                entry.transition(NegotiationState.AWAITING_CONTRIBUTION)
                store.save_tx_log_entry(entry)
                store.save_context(context)
            span.set_attribute("slate_id", slate.id)

        logger.info("Issued invoice", slate_id=slate.id, tx_id=tx_id, amount=args.amount)
        return slate

    def process_invoice_tx(self, slate: Slate, args: InitTxArgs) -> Slate:
        """
        Pay an invoice as participant 0: add inputs and change, set the fee
        and offset, publish round-one data and sign.
        """
        with self.tracer.span("process_invoice_tx", WalletLayer.BUILDER, slate_id=slate.id) as span:
            self._check_incoming(slate)
            if self.store.find_tx_log_entry(slate.id) is not None:
                raise InvalidSlate("Invoice was already processed by this wallet", path="id", slate_id=slate.id)
            if slate.participant(0) is not None:
                raise ParticipantIdCollision(0, slate_id=slate.id)
            if slate.num_participants != 2:
                raise ParticipantCountMismatch(2, slate.num_participants, slate_id=slate.id)
            if args.amount and args.amount != slate.amount:
                raise InvalidSlate(
                    f"Invoice amount {slate.amount} differs from the expected {args.amount}",
                    path="amount",
                    slate_id=slate.id,
                )
            min_conf, max_outputs, num_change, strategy = self._selection_args(args)

            self.refresh()
            height = self._height()
            work = slate.copy()

            with self.locker.critical_section() as store:
                selection = select_coins(
                    store.iter_outputs(),
                    work.amount,
                    height,
                    min_conf,
                    max_outputs,
                    num_change,
                    strategy,
                    self.base_fee,
                    num_recipient_outputs=len(work.tx.body.outputs),
                )
                work.fee = selection.fee
                work.update_kernel()

                tx_id = store.next_tx_log_id()
                sec_key, change = self._add_inputs_and_change(store, work, selection, tx_id)
                context = ParticipantContext.create(
                    work.id,
                    0,
                    ParticipantRole.PAYER,
                    sec_key,
                    is_invoice=True,
                    tx_log_id=tx_id,
                    fee=selection.fee,
                    amount=work.amount,
                    input_ids=[(o.key_id, o.value) for o in selection.inputs],
                    output_ids=[(o.key_id, o.value) for o in change],
                    input_commits=[o.commit for o in selection.inputs],
                    output_commits=[o.commit for o in change],
                    message=args.message,
                )
                work.generate_offset(context)
                work.fill_round_1(context, args.message)
                work.fill_round_2(context)

                store.save_tx_log_entry(TxLogEntry(
                    id=tx_id,
                    tx_type=TxLogEntryType.TX_SENT,
                    tx_slate_id=work.id,
                    amount_debited=selection.total,
                    amount_credited=selection.change,
                    num_inputs=len(selection.inputs),
                    num_outputs=len(change),
                    fee=selection.fee,
                    ttl_cutoff_height=work.ttl_cutoff_height,
                    messages=self._messages(work),
                ))
                store.save_context(context)
                if args.lock_outputs:
                    self._lock_entry(tx_id, context)
            span.set_attribute("tx_id", tx_id)

        logger.info("Processed invoice", slate_id=work.id, tx_id=tx_id, fee=selection.fee)
        return work

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    def finalize_tx(self, slate: Slate) -> Slate:
        """Complete a payment this wallet started."""
        return self._finalize(slate, 0, is_invoice=False)

    def finalize_invoice_tx(self, slate: Slate) -> Slate:
        """Complete an invoice this wallet issued."""
        return self._finalize(slate, 1, is_invoice=True)

    def _finalize(self, slate: Slate, participant_id: int, is_invoice: bool) -> Slate:
        with self.tracer.span("finalize", WalletLayer.BUILDER, slate_id=slate.id, invoice=is_invoice):
            self._check_incoming(slate)
            context = self._context(slate.id, participant_id)
            if context.is_invoice != is_invoice:
                raise InvalidSlate(
                    "Negotiation belongs to the other flow",
                    path="id",
                    slate_id=slate.id,
                    invoice=context.is_invoice,
                )
            self._entry(context)

            work = slate.copy()
            self._check_contribution(work, context)
            work.check_participant_count()
            work.verify_messages()
            work.fill_round_2(context)

            with self.locker.critical_section() as store:
                entry = self._entry(context)
                if entry.state == NegotiationState.CREATED:
                    self.locker.lock(entry.id, context.input_commits)
                    entry.transition(NegotiationState.AWAITING_CONTRIBUTION)
                entry.transition(NegotiationState.READY_TO_AGGREGATE)
                tx = work.finalize()
                minimum = tx.weight_fee(self.base_fee)
                if tx.fee() < minimum:
                    raise InvalidSlate(
                        f"Fee {tx.fee()} below the minimum {minimum}",
                        path="fee",
                        slate_id=work.id,
                    )
                store.store_tx(work.id, tx)
                entry.stored_tx = work.id
                entry.fee = tx.fee()
                entry.messages = self._messages(work)
                entry.transition(NegotiationState.FINALIZED)
                store.save_tx_log_entry(entry)
                store.delete_context(work.id, participant_id)

        self.audit.log("finalize", entry.id, work.id, excess=tx.kernel.excess.hex())
        logger.info("Finalized", slate_id=work.id, tx_id=entry.id, fee=tx.fee())
        return work

    # -------------------------------------------------------------------------
    # Broadcast and cancellation
    # -------------------------------------------------------------------------

    def _entry_for_tx(self, tx: Transaction) -> Optional[TxLogEntry]:
        excesses = {k.excess.hex() for k in tx.body.kernels}
        for entry in self.store.tx_log_entries():
            if entry.stored_tx is None:
                continue
            stored = self.store.get_stored_tx(entry.stored_tx)
            if stored is not None and {k.excess.hex() for k in stored.body.kernels} == excesses:
                return entry
        return None

    def post_tx(self, tx: Transaction, fluff: Optional[bool] = None) -> None:
        """
        Broadcast a finalized transaction. LedgerUnavailable propagates and
        leaves the negotiation FINALIZED so the post can be retried.
        """
        if fluff is None:
            fluff = self.config.ledger.fluff.get()
        with self.tracer.span("post_tx", WalletLayer.BUILDER, fluff=fluff):
            # state check, broadcast and POSTED transition form one critical section
            with self.locker.critical_section() as store:
                entry = self._entry_for_tx(tx)
                if entry is not None and entry.state != NegotiationState.POSTED:
                    InvariantChecker.check_state_transition(
                        entry.state, NegotiationState.POSTED, VALID_TRANSITIONS, tx_id=entry.id,
                    )
                self.ledger.post_tx(tx, fluff)

                if entry is not None and entry.state != NegotiationState.POSTED:
                    entry.transition(NegotiationState.POSTED)
                    store.save_tx_log_entry(entry)

        self.audit.log(
            "post",
            entry.id if entry is not None else None,
            entry.tx_slate_id if entry is not None else None,
            fluff=fluff,
        )

    def cancel_tx(self, tx_id: Optional[int] = None, tx_slate_id: Optional[str] = None) -> None:
        """
        Abandon a negotiation: delete the outputs it would have created,
        release its locks and drop its contexts. Cancelling twice is a no-op;
        a posted or confirmed negotiation raises AlreadyPosted.
        """
        if tx_id is None and tx_slate_id is None:
            raise NegotiationNotFound()
        with self.tracer.span("cancel_tx", WalletLayer.BUILDER, tx_id=tx_id, slate_id=tx_slate_id):
            with self.locker.critical_section() as store:
                if tx_id is not None:
                    entry = store.get_tx_log_entry(tx_id)
                else:
                    entry = store.find_tx_log_entry(tx_slate_id)
                if entry is None:
                    raise NegotiationNotFound(tx_id=tx_id, slate_id=tx_slate_id)
                if tx_slate_id is not None and entry.tx_slate_id != tx_slate_id:
                    raise NegotiationNotFound(tx_id=tx_id, slate_id=tx_slate_id)

                if entry.is_cancelled or entry.state == NegotiationState.CANCELLED:
                    self.audit.log("cancel", entry.id, entry.tx_slate_id, outcome="noop")
                    return
                if (
                    entry.state == NegotiationState.POSTED
                    or entry.confirmed
                    or entry.tx_type == TxLogEntryType.CONFIRMED_COINBASE
                ):
                    raise AlreadyPosted(entry.id, slate_id=entry.tx_slate_id)

                removed = self.locker.delete_unconfirmed(entry.id)
                released = self.locker.release(entry.id)
                if entry.tx_slate_id is not None:
                    store.delete_contexts(entry.tx_slate_id)
                entry = store.get_tx_log_entry(entry.id)
                entry.transition(NegotiationState.CANCELLED)
                entry.tx_type = entry.tx_type.cancelled()
                store.save_tx_log_entry(entry)

        self.audit.log("cancel", entry.id, entry.tx_slate_id, removed=removed, released=released)
        logger.info("Cancelled", tx_id=entry.id, slate_id=entry.tx_slate_id)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_stored_tx(self, entry: Union[TxLogEntry, Dict[str, Any], int]) -> Optional[Transaction]:
        if isinstance(entry, int):
            found = self.store.get_tx_log_entry(entry)
            if found is None:
                raise NegotiationNotFound(tx_id=entry)
            entry = found
        elif isinstance(entry, dict):
            entry = TxLogEntry.from_dict(entry)
        if entry.stored_tx is None:
            return None
        return self.store.get_stored_tx(entry.stored_tx)

    def verify_slate_messages(self, slate: Slate) -> None:
        slate.verify_messages()

    def retrieve_outputs(
        self,
        include_spent: bool = False,
        refresh_from_node: bool = True,
        tx_id: Optional[int] = None,
    ) -> Tuple[bool, List[OutputData]]:
        refreshed = self.refresh() if refresh_from_node else False
        outputs = [
            o for o in self.store.iter_outputs()
            if (include_spent or o.status != OutputStatus.SPENT)
            and (tx_id is None or o.tx_log_entry == tx_id or o.locked_by == tx_id)
        ]
        outputs.sort(key=lambda o: o.key_id)
        return refreshed, outputs

    def retrieve_txs(
        self,
        refresh_from_node: bool = True,
        tx_id: Optional[int] = None,
        tx_slate_id: Optional[str] = None,
    ) -> Tuple[bool, List[TxLogEntry]]:
        refreshed = self.refresh() if refresh_from_node else False
        entries = [
            e for e in self.store.tx_log_entries()
            if (tx_id is None or e.id == tx_id) and (tx_slate_id is None or e.tx_slate_id == tx_slate_id)
        ]
        return refreshed, entries

    def retrieve_summary_info(
        self,
        refresh_from_node: bool = True,
        minimum_confirmations: Optional[int] = None,
    ) -> Tuple[bool, WalletInfo]:
        refreshed = self.refresh() if refresh_from_node else False
        if minimum_confirmations is None:
            minimum_confirmations = self.config.selection.minimum_confirmations.get()
        entries = {e.id: e for e in self.store.tx_log_entries()}
        info = WalletInfo.summarize(self.store.iter_outputs(), entries, self._height(), minimum_confirmations)
        return refreshed, info

    def node_height(self) -> Dict[str, Any]:
        try:
            height = self.ledger.get_chain_height()
            updated = True
        except LedgerUnavailable:
            height = self._height()
            updated = False
        return {"height": str(height), "updated_from_node": updated}

    # -------------------------------------------------------------------------
    # Chain synchronisation
    # -------------------------------------------------------------------------

    @timed_operation(logger, "refresh")
    def refresh(self) -> bool:
        """
        Reconcile stored outputs with the chain. Returns False, leaving the
        store untouched, when the ledger is unreachable.
        """
        try:
            height = self.ledger.get_chain_height()
            candidates = [o.commit for o in self.store.iter_outputs() if o.status != OutputStatus.SPENT]
            on_chain = self.ledger.get_outputs_from_node(candidates)
        except LedgerUnavailable as e:
            logger.warning("Refresh skipped, ledger unavailable", error=e.message)
            return False

        confirmed: Dict[int, int] = {}
        gone: List[str] = []
        with self.locker.critical_section() as store:
            for commit in candidates:
                output = store.get_output(commit)
                if output is None:
                    continue
                found = on_chain.get(commit)
                pending = output.status == OutputStatus.UNCONFIRMED or (
                    output.status == OutputStatus.LOCKED
                    and output.status_before_lock == OutputStatus.UNCONFIRMED
                )
                if found is not None:
                    if pending:
                        if output.status == OutputStatus.LOCKED:
                            output.status_before_lock = OutputStatus.UNSPENT
                        else:
                            output.status = OutputStatus.UNSPENT
                        output.height = found[0]
                        store.save_output(output)
                        if output.tx_log_entry is not None:
                            confirmed.setdefault(output.tx_log_entry, found[0])
                elif not pending and output.status in (OutputStatus.UNSPENT, OutputStatus.LOCKED):
                    gone.append(commit)
                    if output.locked_by is not None:
                        confirmed.setdefault(output.locked_by, height)
            self.locker.mark_spent(gone)

            for tx_log_id, at in sorted(confirmed.items()):
                entry = store.get_tx_log_entry(tx_log_id)
                if entry is None or entry.confirmed or entry.is_cancelled:
                    continue
                self.locker.mark_confirmed(tx_log_id, at)
                if entry.tx_slate_id is not None:
                    store.delete_contexts(entry.tx_slate_id)
            store.set_last_confirmed_height(height)
        return True

    # -------------------------------------------------------------------------
    # Coinbase
    # -------------------------------------------------------------------------

    def build_coinbase(self, block_fees: BlockFees) -> CoinbaseResult:
        """
        Build the reward output and kernel for a block at ``block_fees.height``.
        The output matures ``coinbase_maturity`` blocks later.
        """
        chain = self.config.chain
        value = chain.reward.get() + block_fees.fees
        with self.tracer.span("build_coinbase", WalletLayer.BUILDER, height=block_fees.height):
            with self.locker.critical_section() as store:
                tx_id = store.next_tx_log_id()
                output, data, blind = self._new_output(
                    store,
                    value,
                    tx_id,
                    features=OutputFeatures.COINBASE,
                    key_id=block_fees.key_id,
                    height=block_fees.height,
                    lock_height=block_fees.height + chain.coinbase_maturity.get(),
                )
                msg = kernel_sig_msg(KernelFeatures.COINBASE, 0, 0)
                kernel = TxKernel(
                    features=KernelFeatures.COINBASE,
                    excess=pubkey_from_secret(blind).to_commitment(),
                    excess_sig=sign(msg, blind, random_scalar()),
                )
                store.save_tx_log_entry(TxLogEntry(
                    id=tx_id,
                    tx_type=TxLogEntryType.CONFIRMED_COINBASE,
                    state=NegotiationState.POSTED,
                    amount_credited=value,
                    num_outputs=1,
                    creation_ts=utc_now_iso(),
                ))

        logger.info("Built coinbase", height=block_fees.height, value=value, key_id=data.key_id.hex())
        return CoinbaseResult(output, kernel, data.key_id)
