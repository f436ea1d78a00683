"""
Escrow Contract Client

Thin web3.py wrapper around the course escrow contract. One client is built
per (blockchain, chain id) from the RPC URL and escrow address configured on
a PaymentToken. Write calls are signed locally with the platform operator key
and awaited until mined.

Operator key resolution:
1. AWS Secrets Manager secret `payment-operator-{ACTIVE_NETWORK}` when
   `AWS_SECRETS_ENABLED` is set (boto3)
2. `PAYMENT_WALLET_PRIVATE_KEY`
3. otherwise PaymentConfigurationError

Author: Academy Development Team
Version: 1.0.0
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from ..exceptions import BlockchainError, PaymentConfigurationError
from ..models import PaymentToken

logger = logging.getLogger(__name__)

ZERO_BYTES32 = "0x" + "00" * 32
RPC_ERRORS = (ContractLogicError, Web3Exception, ValueError)
GAS_MARGIN = Decimal("1.2")
RPC_TIMEOUT_SECONDS = 30

ESCROW_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "createEscrowFromApproval",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "student", "type": "address"},
            {"name": "instructor", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "courseId", "type": "bytes32"},
            {"name": "escrowPeriodDays", "type": "uint256"},
            {"name": "customPlatformFee", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "releaseEscrow",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "escrowId", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "batchReleaseEscrows",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "escrowIds", "type": "bytes32[]"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "refundEscrow",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "escrowId", "type": "bytes32"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getEscrow",
        "stateMutability": "view",
        "inputs": [{"name": "escrowId", "type": "bytes32"}],
        "outputs": [
            {"name": "student", "type": "address"},
            {"name": "instructor", "type": "address"},
            {"name": "totalAmount", "type": "uint256"},
            {"name": "platformFee", "type": "uint256"},
            {"name": "instructorFee", "type": "uint256"},
            {"name": "revenueSplitAmount", "type": "uint256"},
            {"name": "releaseDate", "type": "uint256"},
            {"name": "isReleased", "type": "bool"},
            {"name": "isRefunded", "type": "bool"},
            {"name": "createdAt", "type": "uint256"},
            {"name": "courseId", "type": "bytes32"},
        ],
    },
    {
        "type": "function",
        "name": "studentCourseEscrow",
        "stateMutability": "view",
        "inputs": [
            {"name": "student", "type": "address"},
            {"name": "courseId", "type": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "type": "function",
        "name": "canReleaseEscrow",
        "stateMutability": "view",
        "inputs": [{"name": "escrowId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "event",
        "name": "PaymentReceived",
        "anonymous": False,
        "inputs": [
            {"name": "escrowId", "type": "bytes32", "indexed": True},
            {"name": "student", "type": "address", "indexed": True},
            {"name": "instructor", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "courseId", "type": "bytes32", "indexed": False},
        ],
    },
]


@dataclass
class OnChainEscrow:
    escrow_id: str
    student: str
    instructor: str
    total_amount: int
    release_date: datetime
    is_released: bool
    is_refunded: bool

    @property
    def exists(self) -> bool:
        return self.total_amount > 0 or int(self.student, 16) != 0

    def is_due(self, now: datetime) -> bool:
        return not self.is_released and not self.is_refunded and now >= self.release_date


def course_id_bytes32(course_id) -> bytes:
    """bytes32 course identifier used by the contract."""
    return Web3.keccak(text=str(course_id))


def _escrow_id_bytes(escrow_id: str) -> bytes:
    return Web3.to_bytes(hexstr=escrow_id)


@contextmanager
def rpc_errors(message: str):
    """Re-raise RPC, revert and decoding failures as BlockchainError."""
    try:
        yield
    except RPC_ERRORS as exc:
        raise BlockchainError(f"{message}: {exc}") from exc


def load_operator_private_key() -> str:
    if settings.AWS_SECRETS_ENABLED:
        secret_name = f"payment-operator-{settings.ACTIVE_NETWORK}"
        try:
            client = boto3.client("secretsmanager", region_name=settings.AWS_REGION)
            secret = client.get_secret_value(SecretId=secret_name)["SecretString"]
        except (BotoCoreError, ClientError) as exc:
            raise PaymentConfigurationError(
                f"Could not load operator key from secret {secret_name}",
                error_code="operator_key_unavailable",
            ) from exc
        # the secret is either the raw key or {"privateKey": "0x..."}
        if secret.strip().startswith("{"):
            secret = json.loads(secret).get("privateKey", "")
        if secret:
            return secret.strip()

    if settings.PAYMENT_WALLET_PRIVATE_KEY:
        return settings.PAYMENT_WALLET_PRIVATE_KEY

    raise PaymentConfigurationError(
        "Payment operator wallet is not configured", error_code="operator_key_missing"
    )


class EscrowClient:
    """Contract calls against the escrow deployed on one chain."""

    def __init__(self, rpc_url: str, contract_address: str, chain_id: int, private_key: Optional[str] = None):
        if not rpc_url or not contract_address:
            raise PaymentConfigurationError("RPC URL and escrow contract address are required")
        self.chain_id = int(chain_id)
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": RPC_TIMEOUT_SECONDS}))
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=ESCROW_ABI)
        self._private_key = private_key
        self._account = None

    @classmethod
    def for_token(cls, token: PaymentToken) -> "EscrowClient":
        return cls(token.rpc_url, token.payment_contract_address, token.chain_id)

    @classmethod
    def for_chain(cls, blockchain: str, chain_id: int) -> "EscrowClient":
        token = (
            PaymentToken.objects.filter(blockchain=blockchain, chain_id=chain_id, is_active=True)
            .exclude(payment_contract_address="")
            .order_by("display_order")
            .first()
        )
        if token is None:
            raise PaymentConfigurationError(
                f"No escrow contract configured for {blockchain} chain {chain_id}"
            )
        return cls.for_token(token)

    @property
    def account(self):
        if self._account is None:
            self._account = Account.from_key(self._private_key or load_operator_private_key())
        return self._account

    # --- reads ---

    def get_transaction_receipt(self, tx_hash: str):
        """Receipt of a mined transaction or None when the chain does not know it."""
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except RPC_ERRORS as exc:
            raise BlockchainError(f"Could not read transaction {tx_hash}") from exc

    def get_transaction(self, tx_hash: str):
        with rpc_errors(f"Could not read transaction {tx_hash}"):
            return self.w3.eth.get_transaction(tx_hash)

    def get_escrow(self, escrow_id: str) -> OnChainEscrow:
        with rpc_errors(f"Could not read escrow {escrow_id}"):
            data = self.contract.functions.getEscrow(_escrow_id_bytes(escrow_id)).call()
        return OnChainEscrow(
            escrow_id=escrow_id,
            student=data[0],
            instructor=data[1],
            total_amount=int(data[2]),
            release_date=datetime.fromtimestamp(int(data[6]), tz=dt_timezone.utc),
            is_released=bool(data[7]),
            is_refunded=bool(data[8]),
        )

    def find_student_escrow(self, student_address: str, course_id) -> Optional[str]:
        with rpc_errors("Could not look up escrow on blockchain"):
            escrow_id = self.contract.functions.studentCourseEscrow(
                Web3.to_checksum_address(student_address), course_id_bytes32(course_id)
            ).call()
        escrow_hex = Web3.to_hex(escrow_id)
        return None if escrow_hex == ZERO_BYTES32 else escrow_hex

    def can_release(self, escrow_id: str) -> bool:
        with rpc_errors(f"Could not read escrow {escrow_id}"):
            return bool(self.contract.functions.canReleaseEscrow(_escrow_id_bytes(escrow_id)).call())

    # --- writes ---

    def _transact(self, contract_function) -> Dict[str, Any]:
        sender = self.account.address
        with rpc_errors("Escrow transaction failed"):
            tx = contract_function.build_transaction(
                {
                    "from": sender,
                    "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                    "chainId": self.chain_id,
                }
            )
            tx["gas"] = int(Decimal(self.w3.eth.estimate_gas(tx)) * GAS_MARGIN)
            signed = self.w3.eth.account.sign_transaction(tx, private_key=self.account.key)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=settings.BLOCKCHAIN_RECEIPT_TIMEOUT_SECONDS
            )

        if receipt["status"] != 1:
            raise BlockchainError(
                "Escrow transaction reverted", details={"transaction_hash": Web3.to_hex(tx_hash)}
            )
        return receipt

    def create_escrow(
        self,
        student: str,
        instructor: str,
        amount: int,
        course_id,
        escrow_period_days: int,
        platform_fee_percentage: int,
    ) -> Dict[str, str]:
        """Register a received payment; returns escrow id and transaction hash."""
        receipt = self._transact(
            self.contract.functions.createEscrowFromApproval(
                Web3.to_checksum_address(student),
                Web3.to_checksum_address(instructor),
                int(amount),
                course_id_bytes32(course_id),
                int(escrow_period_days),
                int(platform_fee_percentage),
            )
        )
        events = self.contract.events.PaymentReceived().process_receipt(receipt)
        if not events:
            raise BlockchainError("PaymentReceived event missing from escrow receipt")
        return {
            "escrow_id": Web3.to_hex(events[0]["args"]["escrowId"]),
            "transaction_hash": Web3.to_hex(receipt["transactionHash"]),
        }

    def release_escrow(self, escrow_id: str) -> str:
        receipt = self._transact(self.contract.functions.releaseEscrow(_escrow_id_bytes(escrow_id)))
        return Web3.to_hex(receipt["transactionHash"])

    def batch_release_escrows(self, escrow_ids: List[str]) -> str:
        receipt = self._transact(
            self.contract.functions.batchReleaseEscrows([_escrow_id_bytes(e) for e in escrow_ids])
        )
        return Web3.to_hex(receipt["transactionHash"])

    def refund_escrow(self, escrow_id: str) -> str:
        receipt = self._transact(self.contract.functions.refundEscrow(_escrow_id_bytes(escrow_id)))
        return Web3.to_hex(receipt["transactionHash"])
